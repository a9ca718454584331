"""Tests for the per-key minute/hour quota."""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.database import get_db_context
from app.models.rate_limit import RateLimitCounter
from app.services.rate_limiter import ApiRateLimiter, RateLimitResult
from app.utils.security import digest

NOW = datetime(2026, 3, 1, 12, 30, 15)
KEY = digest("op_" + "a" * 32)


def make_limiter(**overrides) -> ApiRateLimiter:
    options = dict(per_minute=60, per_hour=1000, retention_minutes=120, cleanup_probability=0.0)
    options.update(overrides)
    return ApiRateLimiter(**options)


async def seed(window_start: datetime, count: int, key_hash: str = KEY) -> None:
    async with get_db_context() as session:
        session.add(RateLimitCounter(api_key_hash=key_hash, window_start=window_start, request_count=count))


class TestMinuteWindow:
    @pytest.mark.asyncio
    async def test_sixty_requests_then_denied(self, database):
        limiter = make_limiter()

        remaining = []
        for _ in range(60):
            result = await limiter.check_and_consume(KEY, now=NOW)
            assert result.allowed
            remaining.append(result.remaining)
        assert remaining == list(range(59, -1, -1))

        denied = await limiter.check_and_consume(KEY, now=NOW)
        assert not denied.allowed
        assert denied.limit == 60
        assert denied.remaining == 0
        assert 0 < denied.reset_seconds <= 60
        assert denied.reset_seconds == 60 - NOW.second

    @pytest.mark.asyncio
    async def test_denied_request_is_not_counted(self, database):
        limiter = make_limiter(per_minute=2)
        for _ in range(5):
            await limiter.check_and_consume(KEY, now=NOW)

        async with get_db_context() as session:
            count = await session.scalar(
                select(RateLimitCounter.request_count).where(RateLimitCounter.api_key_hash == KEY)
            )
        assert count == 2

    @pytest.mark.asyncio
    async def test_next_minute_starts_fresh(self, database):
        limiter = make_limiter(per_minute=1)
        assert (await limiter.check_and_consume(KEY, now=NOW)).allowed
        assert not (await limiter.check_and_consume(KEY, now=NOW)).allowed
        assert (await limiter.check_and_consume(KEY, now=NOW + timedelta(minutes=1))).allowed

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, database):
        limiter = make_limiter(per_minute=1)
        assert (await limiter.check_and_consume(KEY, now=NOW)).allowed
        assert (await limiter.check_and_consume(digest("other"), now=NOW)).allowed

    @pytest.mark.asyncio
    async def test_one_row_per_minute(self, database):
        limiter = make_limiter()
        for _ in range(3):
            await limiter.check_and_consume(KEY, now=NOW)
            await limiter.check_and_consume(KEY, now=NOW.replace(second=59))

        async with get_db_context() as session:
            rows = await session.scalar(select(func.count()).select_from(RateLimitCounter))
        assert rows == 1

    def test_headers(self):
        headers = RateLimitResult(True, 12, 30, 60).headers()
        assert headers == {
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "12",
            "X-RateLimit-Reset": "30",
        }


class TestHourWindow:
    @pytest.mark.asyncio
    async def test_hour_limit(self, database):
        limiter = make_limiter(per_hour=100)
        await seed(datetime(2026, 3, 1, 12, 5), 50)
        await seed(datetime(2026, 3, 1, 12, 10), 50)

        result = await limiter.check_and_consume(KEY, now=NOW)
        assert not result.allowed
        assert result.limit == 100
        assert result.reset_seconds == (60 - NOW.minute) * 60

    @pytest.mark.asyncio
    async def test_previous_hour_not_counted(self, database):
        limiter = make_limiter(per_hour=100)
        await seed(datetime(2026, 3, 1, 11, 50), 80)
        await seed(datetime(2026, 3, 1, 12, 5), 50)

        result = await limiter.check_and_consume(KEY, now=NOW)
        assert result.allowed
        assert result.limit == 60


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_store_error_allows_request(self):
        @asynccontextmanager
        async def broken_session():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
            yield  # pragma: no cover

        limiter = make_limiter(session_factory=broken_session)
        result = await limiter.check_and_consume(KEY, now=NOW)
        assert result.allowed
        assert result.remaining == 60
        assert result.reset_seconds == 60


class TestCleanup:
    @pytest.mark.asyncio
    async def test_purge_stale(self, database):
        await seed(NOW.replace(second=0) - timedelta(hours=3), 5)
        await seed(NOW.replace(second=0) - timedelta(minutes=10), 5)

        deleted = await make_limiter().purge_stale(NOW)
        assert deleted == 1

        async with get_db_context() as session:
            rows = await session.scalar(select(func.count()).select_from(RateLimitCounter))
        assert rows == 1

    @pytest.mark.asyncio
    async def test_purge_failure_is_swallowed(self):
        @asynccontextmanager
        async def broken_session():
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))
            yield  # pragma: no cover

        assert await make_limiter(session_factory=broken_session).purge_stale(NOW) == 0
