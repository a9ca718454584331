"""
Database configuration and session management.
Uses async SQLAlchemy for non-blocking database operations.

테이블: shares, api_keys, api_rate_limits.
burn 승자 결정과 조회수 증가는 단일 조건부 DELETE/UPDATE 문에 의존하므로
문장 단위 원자성만 있으면 된다 (SQLite에서는 쓰기가 직렬화됨).

로깅:
- SQL echo 비활성화
- 느린 쿼리 WARNING (1초 이상)
- 세션 오류 ERROR + db_errors_total (도메인 오류는 제외)
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from app.config import DEFAULT_DATABASE_URL, Settings, get_settings
from app.exceptions import ShareError
from app.utils.prometheus_metrics import db_errors_total

_logger = logging.getLogger("app.db")

settings = get_settings()

# 느린 쿼리 임계값 (초)
SLOW_QUERY_THRESHOLD = 1.0

# SQLite 쓰기 잠금 대기 시간 (초). 동시 burn/조회수/쿼터 갱신이 서로 기다린다
SQLITE_BUSY_TIMEOUT = 15.0


def _create_engine(url: str, config: Settings) -> AsyncEngine:
    if url.startswith("sqlite"):
        # 요청마다 새 연결 (파일 잠금은 SQLite가 관리)
        return create_async_engine(
            url,
            echo=False,
            poolclass=NullPool,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT},
        )
    return create_async_engine(
        url,
        echo=False,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=True,
    )


engine = _create_engine((settings.database_url or "").strip() or DEFAULT_DATABASE_URL, settings)


@event.listens_for(engine.sync_engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(engine.sync_engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start_times = conn.info.get("query_start_time")
    if not start_times:
        return
    elapsed = time.perf_counter() - start_times.pop()
    if elapsed >= SLOW_QUERY_THRESHOLD:
        # 앞 100자만 (파라미터는 본문/해시가 실릴 수 있어 제외)
        short_stmt = statement[:100] + "..." if len(statement) > 100 else statement
        _logger.warning(
            "Slow query",
            extra={"event": "db", "ms": round(elapsed * 1000), "query": short_stmt},
        )


async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def init_db() -> None:
    """Create all tables (shares, api_keys, api_rate_limits)."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections properly."""
    await engine.dispose()


def _record_session_error(message: str, error: Exception) -> None:
    db_errors_total.inc()
    _logger.error(
        message,
        extra={
            "event": "db",
            "error_type": type(error).__name__,
            "error": str(error)[:200],
        },
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session dependency.

    Share mutations commit inside ShareService; this commit only covers
    whatever the handler left pending. Domain errors roll back without being
    counted as DB errors.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except ShareError:
            await session.rollback()
            raise
        except Exception as e:
            _record_session_error("DB error", e)
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Short-lived session committed on exit.

    Used by the quota counters, last_used_at updates and the share reaper,
    which must not share the request's transaction.

    Usage:
        async with get_db_context() as session:
            result = await session.execute(query)
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            _record_session_error("DB context error", e)
            await session.rollback()
            raise
        finally:
            await session.close()
