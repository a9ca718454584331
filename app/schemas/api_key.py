"""
API key management schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreate(BaseModel):
    """Schema for issuing a key on behalf of a user."""

    user_id: str = Field(..., min_length=1, max_length=255)


class ApiKeyResponse(BaseModel):
    """Schema for key listings. Never contains the secret."""

    id: str
    user_id: str
    key_prefix: str
    is_active: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApiKeyIssuedResponse(ApiKeyResponse):
    """
    Schema for a newly issued key.
    api_key is the plaintext secret, shown exactly once.
    """

    api_key: str
