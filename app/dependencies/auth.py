"""
Authentication and service dependencies for FastAPI.
"""
import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.exceptions import Unauthorized
from app.services.api_key import ApiKeyService, Caller
from app.services.object_storage import ObjectStorageService, get_storage_service

logger = logging.getLogger("app.auth")


def get_storage() -> ObjectStorageService:
    """Object Storage dependency (overridden in tests)."""
    return get_storage_service()


async def get_optional_caller(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[Caller]:
    """
    Resolve the API key in the Authorization header, if any.

    Returns:
        Caller, or None for anonymous requests and unknown/inactive keys
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    return await ApiKeyService(db).resolve_caller(auth_header)


async def require_admin_token(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    """
    Dependency for the key-management router.

    The dashboard backend calls it on behalf of users already signed in with
    the identity provider.

    Raises:
        Unauthorized: token missing, wrong, or no admin token configured
    """
    expected = get_settings().admin_api_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        logger.warning("Admin auth failed", extra={"event": "auth", "reason": "bad_admin_token"})
        raise Unauthorized()
