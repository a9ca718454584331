"""
API key management router.

대시보드 백엔드(ID 제공자로 로그인한 사용자를 대신함)만 호출하며 X-Admin-Token으로 보호한다.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import require_admin_token
from app.exceptions import NotFound
from app.schemas.api_key import ApiKeyCreate, ApiKeyIssuedResponse, ApiKeyResponse
from app.services.api_key import ApiKeyService

logger = logging.getLogger("app.keys")
router = APIRouter(
    prefix="/api/v1/keys",
    tags=["API Keys"],
    dependencies=[Depends(require_admin_token)],
)


@router.post(
    "",
    response_model=ApiKeyIssuedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an API key",
)
async def issue_key(
    data: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
) -> ApiKeyIssuedResponse:
    """
    Issue a new key for a user.

    The plaintext key is returned exactly once; only its digest is stored.
    """
    api_key, plaintext = await ApiKeyService(db).issue_key(data.user_id)
    await db.commit()
    return ApiKeyIssuedResponse(
        **ApiKeyResponse.model_validate(api_key).model_dump(),
        api_key=plaintext,
    )


@router.get(
    "",
    response_model=List[ApiKeyResponse],
    summary="List a user's API keys",
)
async def list_keys(
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> List[ApiKeyResponse]:
    keys = await ApiKeyService(db).list_keys(user_id)
    return [ApiKeyResponse.model_validate(key) for key in keys]


@router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
)
async def revoke_key(
    key_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Deactivate a key. Revoked keys stop resolving immediately."""
    revoked = await ApiKeyService(db).revoke_key(key_id, user_id)
    if not revoked:
        raise NotFound("API key not found")
    await db.commit()
