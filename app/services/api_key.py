"""
API key service: bearer-token resolution and key management.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db_context
from app.models.api_key import ApiKey
from app.utils.expiration import utcnow
from app.utils.prometheus_metrics import api_key_auth_total
from app.utils.security import api_key_display_prefix, digest, generate_api_key

logger = logging.getLogger("app.auth")

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Caller:
    """Identity resolved from an API key."""

    user_id: str
    # 쿼터 버킷 키와 동일 (다시 해시하지 않도록 전달)
    key_hash: str


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """Return the token of an `Authorization: Bearer <token>` header."""
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token = auth_header[len(BEARER_PREFIX):].strip()
    return token or None


class ApiKeyService:
    """
    Service for resolving and managing API keys.
    Plaintext keys are never stored; lookups are by digest.
    """

    def __init__(self, db: AsyncSession, session_factory: Callable = get_db_context):
        self.db = db
        self._session_factory = session_factory
        self.settings = get_settings()

    async def resolve_caller(self, auth_header: Optional[str]) -> Optional[Caller]:
        """
        Resolve a bearer token to its owning identity.

        Args:
            auth_header: Raw Authorization header value

        Returns:
            Caller, or None if the header is missing/malformed or the key is
            unknown or inactive
        """
        token = extract_bearer_token(auth_header)
        if token is None:
            api_key_auth_total.labels(result="malformed").inc()
            return None

        if not token.startswith(self.settings.accepted_api_key_prefixes):
            api_key_auth_total.labels(result="unknown_prefix").inc()
            logger.warning("Auth failed", extra={"event": "auth", "reason": "unknown_prefix"})
            return None

        key_hash = digest(token)
        api_key = await self.db.scalar(
            select(ApiKey)
            .where(ApiKey.key_hash == key_hash)
            .where(ApiKey.is_active.is_(True))
        )
        if api_key is None:
            api_key_auth_total.labels(result="not_found").inc()
            logger.warning("Auth failed", extra={"event": "auth", "reason": "key_not_found"})
            return None

        await self._touch_last_used(key_hash)
        api_key_auth_total.labels(result="success").inc()
        return Caller(user_id=api_key.user_id, key_hash=key_hash)

    async def _touch_last_used(self, key_hash: str) -> None:
        # 별도 세션으로 즉시 커밋, 실패해도 요청은 계속 진행
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(ApiKey)
                    .where(ApiKey.key_hash == key_hash)
                    .values(last_used_at=utcnow())
                )
        except SQLAlchemyError as e:
            logger.warning(
                "last_used_at update failed",
                extra={"event": "auth", "error": str(e)[:200]},
            )

    # ============== Key management ==============

    async def issue_key(self, user_id: str) -> Tuple[ApiKey, str]:
        """
        Issue a new API key for a user.

        Returns:
            (ApiKey row, plaintext key). The plaintext is not recoverable later.
        """
        plaintext = generate_api_key(self.settings.api_key_prefix)
        api_key = ApiKey(
            user_id=user_id,
            key_hash=digest(plaintext),
            key_prefix=api_key_display_prefix(plaintext),
        )
        self.db.add(api_key)
        await self.db.flush()
        await self.db.refresh(api_key)
        logger.info("API key issued", extra={"event": "auth", "key_id": api_key.id, "user_id": user_id})
        return api_key, plaintext

    async def list_keys(self, user_id: str) -> List[ApiKey]:
        """List a user's keys, newest first."""
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.user_id == user_id)
            .order_by(ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def revoke_key(self, key_id: str, user_id: str) -> bool:
        """
        Deactivate a key owned by user_id.

        Returns:
            True if a key was deactivated
        """
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .where(ApiKey.user_id == user_id)
            .values(is_active=False)
        )
        revoked = (result.rowcount or 0) > 0
        if revoked:
            logger.info("API key revoked", extra={"event": "auth", "key_id": key_id, "user_id": user_id})
        return revoked
