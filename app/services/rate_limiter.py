"""
API quota enforcement keyed by the hashed API key.

Two windows are enforced: requests per minute and requests per hour. Counters are
minute-aligned rows in `api_rate_limits`; the hourly count is the sum of the rows
of the current hour.

동시성: 조회 후 upsert 사이에 경합이 있어 같은 분에 동시 요청이 몰리면 한도를 약간
넘을 수 있다 (soft limit). 잠금으로 직렬화하지 않는다.
장애 시: 카운터 저장소 오류는 로깅 후 허용 (fail open).
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db_context
from app.models.rate_limit import RateLimitCounter
from app.utils.background import spawn
from app.utils.expiration import utcnow
from app.utils.prometheus_metrics import (
    api_quota_cleanup_total,
    api_quota_decisions_total,
    api_quota_fail_open_total,
)

logger = logging.getLogger("app.rate_limit")


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a quota check."""

    allowed: bool
    remaining: int
    reset_seconds: int
    limit: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


class ApiRateLimiter:
    """
    Sliding per-minute / per-hour request counters.

    Counters are written through their own short-lived session so each
    increment is committed immediately and visible to concurrent requests.
    """

    def __init__(
        self,
        session_factory: Callable = get_db_context,
        per_minute: Optional[int] = None,
        per_hour: Optional[int] = None,
        retention_minutes: Optional[int] = None,
        cleanup_probability: Optional[float] = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.per_minute = per_minute if per_minute is not None else settings.api_rate_limit_per_minute
        self.per_hour = per_hour if per_hour is not None else settings.api_rate_limit_per_hour
        self.retention = timedelta(
            minutes=retention_minutes
            if retention_minutes is not None
            else settings.api_rate_limit_retention_minutes
        )
        self.cleanup_probability = (
            cleanup_probability
            if cleanup_probability is not None
            else settings.api_rate_limit_cleanup_probability
        )

    async def check_and_consume(
        self,
        key_hash: str,
        now: Optional[datetime] = None,
    ) -> RateLimitResult:
        """
        Admit or deny one request for key_hash and consume one unit if admitted.

        Args:
            key_hash: Digest of the API key (or of the anonymous bucket key)
            now: Reference time (naive UTC), defaults to the current time

        Returns:
            RateLimitResult with remaining quota and seconds until reset
        """
        now = now or utcnow()
        try:
            result = await self._check_and_consume(key_hash, now)
        except Exception as e:
            api_quota_fail_open_total.inc()
            logger.error(
                "Rate limit check failed, allowing request",
                exc_info=e,
                extra={"event": "rate_limit", "bucket": key_hash[:8]},
            )
            return RateLimitResult(
                allowed=True,
                remaining=self.per_minute,
                reset_seconds=60,
                limit=self.per_minute,
            )

        if random.random() < self.cleanup_probability:
            self._schedule_cleanup(now)
        return result

    async def _check_and_consume(self, key_hash: str, now: datetime) -> RateLimitResult:
        window_start = now.replace(second=0, microsecond=0)
        hour_start = window_start.replace(minute=0)
        minute_reset = 60 - now.second

        async with self._session_factory() as session:
            current = await session.scalar(
                select(RateLimitCounter.request_count)
                .where(RateLimitCounter.api_key_hash == key_hash)
                .where(RateLimitCounter.window_start == window_start)
            ) or 0

            if current >= self.per_minute:
                api_quota_decisions_total.labels(result="blocked", window="minute").inc()
                return RateLimitResult(False, 0, minute_reset, self.per_minute)

            hourly = await session.scalar(
                select(func.coalesce(func.sum(RateLimitCounter.request_count), 0))
                .where(RateLimitCounter.api_key_hash == key_hash)
                .where(RateLimitCounter.window_start >= hour_start)
            ) or 0

            if hourly >= self.per_hour:
                api_quota_decisions_total.labels(result="blocked", window="hour").inc()
                return RateLimitResult(False, 0, (60 - now.minute) * 60, self.per_hour)

            new_count = await self._increment(session, key_hash, window_start)

        api_quota_decisions_total.labels(result="allowed", window="minute").inc()
        return RateLimitResult(
            allowed=True,
            remaining=max(0, self.per_minute - new_count),
            reset_seconds=minute_reset,
            limit=self.per_minute,
        )

    async def _increment(
        self,
        session: AsyncSession,
        key_hash: str,
        window_start: datetime,
    ) -> int:
        """Single upsert-with-increment; returns the new count."""
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return await self._increment_fallback(session, key_hash, window_start)

        stmt = (
            insert(RateLimitCounter)
            .values(api_key_hash=key_hash, window_start=window_start, request_count=1)
            .on_conflict_do_update(
                index_elements=["api_key_hash", "window_start"],
                set_={"request_count": RateLimitCounter.request_count + 1},
            )
            .returning(RateLimitCounter.request_count)
        )
        return (await session.execute(stmt)).scalar_one()

    async def _increment_fallback(
        self,
        session: AsyncSession,
        key_hash: str,
        window_start: datetime,
    ) -> int:
        # upsert를 지원하지 않는 dialect: update 후 없으면 insert
        result = await session.execute(
            update(RateLimitCounter)
            .where(RateLimitCounter.api_key_hash == key_hash)
            .where(RateLimitCounter.window_start == window_start)
            .values(request_count=RateLimitCounter.request_count + 1)
        )
        if result.rowcount == 0:
            session.add(RateLimitCounter(
                api_key_hash=key_hash, window_start=window_start, request_count=1
            ))
            await session.flush()
            return 1
        return await session.scalar(
            select(RateLimitCounter.request_count)
            .where(RateLimitCounter.api_key_hash == key_hash)
            .where(RateLimitCounter.window_start == window_start)
        )

    def _schedule_cleanup(self, now: datetime) -> None:
        spawn(self.purge_stale(now), name="rate_limit_cleanup")

    async def purge_stale(self, now: Optional[datetime] = None) -> int:
        """
        Delete counters older than the retention window.
        Best-effort housekeeping: failures are logged and swallowed.

        Returns:
            Number of rows deleted (0 on failure)
        """
        cutoff = (now or utcnow()) - self.retention
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(RateLimitCounter).where(RateLimitCounter.window_start < cutoff)
                )
                deleted = result.rowcount or 0
        except Exception as e:
            api_quota_cleanup_total.labels(result="failure").inc()
            logger.warning(
                "Rate limit cleanup failed",
                extra={"event": "rate_limit", "error": str(e)[:200]},
            )
            return 0
        api_quota_cleanup_total.labels(result="success").inc()
        return deleted


_rate_limiter: Optional[ApiRateLimiter] = None


def get_rate_limiter() -> ApiRateLimiter:
    """Get the singleton rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ApiRateLimiter()
    return _rate_limiter
