"""
Share-related Pydantic schemas for request/response validation.

필드 이름은 공개 API 호환을 위해 paste_* 형식을 유지한다.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ShareCreate(BaseModel):
    """
    Schema for creating a text share.
    content의 공백 여부는 서비스에서 검증 (InvalidInput으로 응답하기 위해).
    """

    content: Optional[str] = None
    title: Optional[str] = Field(None, max_length=255)
    syntax: Optional[str] = None
    expiration: Optional[str] = Field(
        None,
        description="never, 1h, 1d, 1w, 1m, 3m or 1y (unknown tokens never expire)",
    )
    password: Optional[str] = None
    burn_after_read: bool = False


class PasswordVerify(BaseModel):
    """Body of a verify-get request."""

    password: Optional[str] = None


class ShareCreatedResponse(BaseModel):
    """Schema for share creation response."""

    paste_id: str
    url: str
    protected: bool
    burn_after_read: bool


class FileShareCreatedResponse(ShareCreatedResponse):
    """Upload response: adds the direct link and stored file metadata."""

    direct_url: str
    file_name: str
    file_size: int
    content_type: str


class ShareMetadataResponse(BaseModel):
    """
    Gated view of a password-protected share.
    No content or file fields, by construction.
    """

    paste_id: str
    title: Optional[str] = None
    paste_type: str
    expires_at: Optional[datetime] = None
    created_at: datetime
    protected: bool = True
    burn_after_read: bool


class ShareViewResponse(BaseModel):
    """Full view returned by a successful disclosure."""

    paste_id: str
    paste_content: str
    paste_type: str
    title: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    views: int
    burned: bool = False


class FileShareViewResponse(ShareViewResponse):
    """Full view of an uploaded file."""

    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    content_type: str


class ShareSummary(BaseModel):
    """Listing entry (metadata only)."""

    paste_id: str
    title: Optional[str] = None
    paste_type: str
    content_type: str
    expires_at: Optional[datetime] = None
    created_at: datetime
    views: int
    protected: bool
    burn_after_read: bool


class ShareListResponse(BaseModel):
    pastes: List[ShareSummary] = []


class ShareDeletedResponse(BaseModel):
    message: str = "Paste deleted successfully"
