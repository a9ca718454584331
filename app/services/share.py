"""
Share lifecycle service: create, disclose (plain, password-gated or burning),
delete, list and expire.

상태 전이 규칙:
- 만료(expires_at <= now)된 공유는 물리 삭제 여부와 무관하게 읽을 수 없음
- 비밀번호가 있는 공유는 같은 요청에서 비밀번호를 검증하기 전에는 본문/파일 정보를 반환하지 않음
- burn_after_read 공유는 조건부 DELETE의 영향 행 수로 단 한 명의 승자를 결정
  (select 후 delete만으로는 동시 요청 둘 다 본문을 받을 수 있음)
- 조회수는 UPDATE ... SET views = views + 1 RETURNING views (읽고 쓰기 분리 없음)

모든 변경 연산은 서비스 안에서 커밋한다. burn 승자는 삭제가 커밋된 뒤에만 본문을 받는다.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import AsyncGenerator, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db_context
from app.exceptions import (
    Expired,
    Forbidden,
    InvalidInput,
    InvalidPassword,
    NotFound,
    PayloadTooLarge,
    ShareError,
)
from app.models.share import ContentType, Share
from app.schemas.share import ShareCreate
from app.services.object_storage import ObjectStorageService, get_storage_service
from app.utils.background import spawn
from app.utils.expiration import resolve_expiration, utcnow
from app.utils.file_types import (
    DEFAULT_SYNTAX,
    FILE_TYPES,
    MB,
    SYNTAX_OPTIONS,
    detect_content_type,
    detect_syntax,
)
from app.utils.prometheus_metrics import (
    share_burn_total,
    share_created_total,
    share_deleted_total,
    share_disclosure_duration_seconds,
    share_disclosure_total,
    share_password_failures_total,
    share_upload_size_bytes,
)
from app.utils.security import digest, generate_file_path, generate_share_id, verify_digest

logger = logging.getLogger("app.share")

# ID 충돌 시 재시도 횟수 (8자리 hex에서 충돌은 드묾)
MAX_ID_ATTEMPTS = 5

# reaper 한 번에 처리하는 최대 행 수
PURGE_BATCH_SIZE = 500


@dataclass(frozen=True)
class Disclosure:
    """
    Outcome of one read attempt.

    gated=True means only metadata may be returned to the caller.
    views is the post-increment count (pre-delete count + 1 when burned).
    """

    share: Share
    views: int
    burned: bool = False
    gated: bool = False
    data: Optional[bytes] = None


def _live(now: datetime):
    """Row filter for shares that are not soft-expired at now."""
    return or_(Share.expires_at.is_(None), Share.expires_at > now)


class ShareService:
    """
    Service for share creation and access.
    Text lives in the database; uploaded file bytes live in Object Storage.
    """

    def __init__(self, db: AsyncSession, storage: ObjectStorageService):
        self.db = db
        self.storage = storage
        self.settings = get_settings()

    # ============== Create ==============

    async def create_share(
        self,
        data: ShareCreate,
        user_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Share:
        """
        Create a text share.

        Args:
            data: Share content and security options
            user_id: Owner, or None for an anonymous share
            now: Reference time for expiration

        Returns:
            Created Share model

        Raises:
            InvalidInput: content is blank or syntax is not supported
        """
        now = now or utcnow()
        content = (data.content or "").strip()
        if not content:
            raise InvalidInput("Content is required")

        syntax = data.syntax or DEFAULT_SYNTAX
        if syntax not in SYNTAX_OPTIONS:
            raise InvalidInput(f"Unsupported syntax: {syntax}")

        share = await self._insert(
            content=content,
            title=(data.title or "").strip() or None,
            syntax=syntax,
            content_type=ContentType.TEXT.value,
            password_hash=digest(data.password) if data.password else None,
            burn_after_read=data.burn_after_read,
            expires_at=resolve_expiration(data.expiration, now),
            created_at=now,
            user_id=user_id,
        )
        self._record_created(share)
        return share

    async def create_file_share(
        self,
        file_content: bytes,
        filename: str,
        mime_type: Optional[str],
        user_id: Optional[str],
        title: Optional[str] = None,
        expiration: Optional[str] = None,
        password: Optional[str] = None,
        burn_after_read: bool = False,
        now: Optional[datetime] = None,
    ) -> Share:
        """
        Store an uploaded file in Object Storage and create its share.

        The blob is written first. If the metadata insert then fails, the blob
        is deleted best-effort; a failed compensation leaves an orphaned blob.

        Raises:
            InvalidInput: empty file or unsupported file type
            PayloadTooLarge: file exceeds the limit of its class
            StorageError: Object Storage upload failed
        """
        now = now or utcnow()
        if not filename:
            raise InvalidInput("File name is required")
        if not file_content:
            raise InvalidInput("File is empty")

        content_type = detect_content_type(filename, mime_type)
        if content_type is None:
            raise InvalidInput("Unsupported file type")

        rule = FILE_TYPES[content_type]
        if len(file_content) > rule.max_size:
            raise PayloadTooLarge(
                f"File too large. Maximum size for {rule.label} is {rule.max_size // MB}MB"
            )

        file_type = mime_type or "application/octet-stream"
        file_path = generate_file_path(user_id)
        await self.storage.upload_file(
            file_content=file_content,
            object_name=file_path,
            content_type=file_type,
        )

        syntax = detect_syntax(filename) if content_type == ContentType.DOCUMENT else DEFAULT_SYNTAX
        try:
            share = await self._insert(
                content="",
                title=(title or "").strip() or filename,
                syntax=syntax,
                content_type=content_type.value,
                file_path=file_path,
                file_name=filename,
                file_size=len(file_content),
                file_type=file_type,
                password_hash=digest(password) if password else None,
                burn_after_read=burn_after_read,
                expires_at=resolve_expiration(expiration, now),
                created_at=now,
                user_id=user_id,
            )
        except Exception:
            # 메타데이터 저장 실패 시 업로드한 파일 정리 (실패하면 고아 파일로 남음)
            await self.storage.delete_file(file_path)
            raise

        share_upload_size_bytes.labels(content_type=share.content_type).observe(share.file_size)
        self._record_created(share)
        return share

    async def _insert(self, **fields) -> Share:
        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            share = Share(id=generate_share_id(), views=0, **fields)
            self.db.add(share)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning(
                    "Share id collision, retrying",
                    extra={"event": "share", "attempt": attempt},
                )
                continue
            return share
        raise ShareError("Could not allocate a share id")

    def _record_created(self, share: Share) -> None:
        share_created_total.labels(
            content_type=share.content_type,
            protected=str(share.is_protected).lower(),
            burn_after_read=str(share.burn_after_read).lower(),
        ).inc()
        logger.info(
            "Share created",
            extra={
                "event": "share",
                "share_id": share.id,
                "user_id": share.user_id,
                "content_type": share.content_type,
                "protected": share.is_protected,
                "burn_after_read": share.burn_after_read,
            },
        )

    # ============== Disclose ==============

    async def disclose(
        self,
        share_id: str,
        password: Optional[str] = None,
        now: Optional[datetime] = None,
        allow_gate: bool = True,
        text_only: bool = False,
        action: str = "get",
    ) -> Disclosure:
        """
        Read a share, applying expiry, password gating, view counting and burn.

        Args:
            share_id: Share ID
            password: Password supplied with this request (verify path)
            now: Reference time
            allow_gate: If False, a protected share is refused outright
                (raw and direct links never prompt)
            text_only: If True, file shares are refused before any view or burn
            action: Metrics label

        Returns:
            Disclosure. gated=True carries metadata only.

        Raises:
            NotFound: absent, already burned, or lost the burn race
                (or a file share when text_only is set)
            Expired: expires_at has passed
            InvalidPassword: supplied password does not match
            Forbidden: protected share and allow_gate is False
        """
        now = now or utcnow()
        async with self._observe(action) as outcome:
            share = await self._load_live(share_id, now)
            if text_only and share.is_file:
                raise NotFound("No text content associated with this ID")

            if password is not None:
                # 비밀번호가 없는 공유에 비밀번호를 보내도 실패로 처리
                if not share.is_protected or not verify_digest(password, share.password_hash):
                    share_password_failures_total.inc()
                    logger.warning(
                        "Invalid share password",
                        extra={"event": "share", "share_id": share_id},
                    )
                    raise InvalidPassword()
            elif share.is_protected:
                if not allow_gate:
                    raise Forbidden(
                        f"Password protected shares cannot be accessed via /{action} endpoint"
                    )
                outcome.append("gated")
                return Disclosure(share=share, views=share.views, gated=True)

            disclosure = await self._consume(share, now)
            outcome.append("disclosed")
            return disclosure

    async def disclose_file(self, share_id: str, now: Optional[datetime] = None) -> Disclosure:
        """
        Read the bytes of an uploaded file (direct image links).

        Bytes are downloaded before the view/burn claim so that a claimed burn
        always returns content. Protected shares are refused.
        """
        now = now or utcnow()
        async with self._observe("img") as outcome:
            share = await self._load_live(share_id, now)
            if share.is_protected:
                raise Forbidden("Password protected images cannot be accessed via /img endpoint")
            if not share.file_path:
                raise NotFound("No image file associated with this ID")

            data = await self.storage.download_file(share.file_path)
            disclosure = await self._consume(share, now)
            outcome.append("disclosed")
            return replace(disclosure, data=data)

    async def peek_embed(self, share_id: str, now: Optional[datetime] = None) -> Share:
        """
        Read a share for an embed render. Does not count a view.

        Raises:
            Forbidden: protected or burn-after-read shares are never embedded
        """
        now = now or utcnow()
        async with self._observe("embed") as outcome:
            share = await self._load_live(share_id, now)
            if share.is_protected or share.burn_after_read:
                raise Forbidden("This share cannot be embedded")
            outcome.append("disclosed")
            return share

    async def _load_live(self, share_id: str, now: datetime) -> Share:
        share = await self.db.get(Share, share_id, populate_existing=True)
        if share is None:
            raise NotFound()
        if share.is_expired_at(now):
            raise Expired()
        return share

    async def _consume(self, share: Share, now: datetime) -> Disclosure:
        if share.burn_after_read:
            if not await self._claim_burn(share.id, now):
                share_burn_total.labels(result="lost").inc()
                raise NotFound()
            share_burn_total.labels(result="won").inc()
            share_deleted_total.labels(reason="burn").inc()
            if share.file_path:
                spawn(self.storage.delete_file(share.file_path), name="burn_blob_delete")
            logger.info("Share burned after read", extra={"event": "share", "share_id": share.id})
            return Disclosure(share=share, views=share.views + 1, burned=True)

        views = await self._increment_views(share.id, now)
        if views is None:
            # 조회와 증가 사이에 삭제/만료됨
            raise NotFound()
        return Disclosure(share=share, views=views)

    async def _claim_burn(self, share_id: str, now: datetime) -> bool:
        """Conditional delete; True only for the caller whose delete removed the row."""
        result = await self.db.execute(
            delete(Share)
            .where(Share.id == share_id)
            .where(_live(now))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _increment_views(self, share_id: str, now: datetime) -> Optional[int]:
        result = await self.db.execute(
            update(Share)
            .where(Share.id == share_id)
            .where(_live(now))
            .values(views=Share.views + 1)
            .returning(Share.views)
            .execution_options(synchronize_session=False)
        )
        views = result.scalar_one_or_none()
        await self.db.commit()
        return views

    @asynccontextmanager
    async def _observe(self, action: str) -> AsyncGenerator[List[str], None]:
        outcome: List[str] = []
        start = time.perf_counter()
        try:
            yield outcome
        except ShareError as e:
            share_disclosure_total.labels(action=action, result=e.kind).inc()
            raise
        else:
            result = outcome[0] if outcome else "disclosed"
            share_disclosure_total.labels(action=action, result=result).inc()
        finally:
            share_disclosure_duration_seconds.labels(action=action).observe(
                time.perf_counter() - start
            )

    # ============== Owner operations ==============

    async def delete_share(self, share_id: str, caller_user_id: str) -> None:
        """
        Delete a share owned by the caller (and its blob, if any).

        Raises:
            NotFound: share does not exist
            Forbidden: caller is not the owner
        """
        share = await self.db.get(Share, share_id, populate_existing=True)
        if share is None:
            raise NotFound()
        if share.user_id is None or share.user_id != caller_user_id:
            logger.warning(
                "Share delete forbidden",
                extra={"event": "share", "share_id": share_id, "user_id": caller_user_id},
            )
            raise Forbidden()

        result = await self.db.execute(
            delete(Share)
            .where(Share.id == share_id)
            .where(Share.user_id == caller_user_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            # 동시에 burn/삭제됨
            raise NotFound()

        share_deleted_total.labels(reason="owner").inc()
        if share.file_path:
            spawn(self.storage.delete_file(share.file_path), name="owner_blob_delete")
        logger.info(
            "Share deleted",
            extra={"event": "share", "share_id": share_id, "user_id": caller_user_id},
        )

    async def list_shares(self, user_id: str, now: Optional[datetime] = None) -> List[Share]:
        """
        List a user's live shares, newest first, capped at list_page_size.
        Expired shares are omitted whether or not the reaper has run.
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(Share)
            .where(Share.user_id == user_id)
            .where(_live(now))
            .order_by(Share.created_at.desc())
            .limit(self.settings.list_page_size)
        )
        return list(result.scalars().all())

    # ============== Housekeeping ==============

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete one batch of expired shares and their blobs.
        Idempotent; reads never depend on it.

        Returns:
            Number of deleted rows
        """
        now = now or utcnow()
        rows = (
            await self.db.execute(
                select(Share.id, Share.file_path)
                .where(Share.expires_at.is_not(None))
                .where(Share.expires_at <= now)
                .limit(PURGE_BATCH_SIZE)
            )
        ).all()
        if not rows:
            return 0

        result = await self.db.execute(
            delete(Share)
            .where(Share.id.in_([row.id for row in rows]))
            .where(Share.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        deleted = result.rowcount or 0

        for row in rows:
            if row.file_path:
                await self.storage.delete_file(row.file_path)

        share_deleted_total.labels(reason="expired").inc(deleted)
        logger.info("Expired shares purged", extra={"event": "share", "count": deleted})
        return deleted


async def share_reaper_loop() -> None:
    """
    Background loop: delete expired shares every share_reaper_interval_seconds.
    Returns immediately when the interval is 0.
    """
    interval = get_settings().share_reaper_interval_seconds
    if interval <= 0:
        return
    logger.info("Share reaper enabled", extra={"event": "lifecycle", "interval": interval})
    while True:
        await asyncio.sleep(interval)
        try:
            async with get_db_context() as session:
                await ShareService(session, get_storage_service()).purge_expired()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # 다음 주기에 다시 시도 (읽기 경로는 reaper에 의존하지 않음)
            logger.warning(
                "Share reaper run failed",
                extra={"event": "share", "error": str(e)[:200]},
            )
