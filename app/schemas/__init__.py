"""
Pydantic schemas package.
All schemas are exported here for easy import.
"""
from app.schemas.share import (
    ShareCreate,
    PasswordVerify,
    ShareCreatedResponse,
    FileShareCreatedResponse,
    ShareMetadataResponse,
    ShareViewResponse,
    FileShareViewResponse,
    ShareSummary,
    ShareListResponse,
    ShareDeletedResponse,
)
from app.schemas.api_key import (
    ApiKeyCreate,
    ApiKeyResponse,
    ApiKeyIssuedResponse,
)

__all__ = [
    # Share schemas
    "ShareCreate",
    "PasswordVerify",
    "ShareCreatedResponse",
    "FileShareCreatedResponse",
    "ShareMetadataResponse",
    "ShareViewResponse",
    "FileShareViewResponse",
    "ShareSummary",
    "ShareListResponse",
    "ShareDeletedResponse",
    # API key schemas
    "ApiKeyCreate",
    "ApiKeyResponse",
    "ApiKeyIssuedResponse",
]
