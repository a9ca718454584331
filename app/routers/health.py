"""
Health Check 라우터.

로드밸런서/Kubernetes용 상태 확인 엔드포인트를 제공합니다.
"""
import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status
from sqlalchemy import text

from app.config import get_settings
from app.database import engine
from app.utils.prometheus_metrics import REGISTRY, Gauge, ready

logger = logging.getLogger("app.health")
router = APIRouter(prefix="/health", tags=["Health"])

settings = get_settings()

# DB 확인 타임아웃 (초)
DB_CHECK_TIMEOUT = 1.0

health_check_status = Gauge(
    "pastely_health_check_status",
    "Health check status (1=healthy, 0=unhealthy)",
    ["check_type"],
    registry=REGISTRY,
)


def _is_ready() -> bool:
    return ready._value.get() != 0


async def _check_db() -> None:
    async def _ping():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    await asyncio.wait_for(_ping(), timeout=DB_CHECK_TIMEOUT)


@router.get("/", summary="Health check (fast)")
async def health_check() -> Dict[str, Any]:
    """
    빠른 Health Check (로드밸런서용).

    - shutdown 중이면 503
    - DB 연결 확인 (타임아웃 1초)
    """
    start_time = time.perf_counter()

    if not _is_ready():
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )

    try:
        await _check_db()
    except asyncio.TimeoutError:
        logger.warning("DB health check timeout", extra={"event": "health"})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection timeout",
        )
    except Exception as e:
        logger.warning("DB health check failed", extra={"event": "health", "error": str(e)[:200]})
        health_check_status.labels(check_type="fast").set(0)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )

    health_check_status.labels(check_type="fast").set(1)
    return {
        "status": "healthy",
        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
        "instance": settings.instance_ip or "unknown",
    }


@router.get("/liveness", summary="Liveness probe (Kubernetes)")
async def liveness_probe() -> Dict[str, str]:
    """프로세스가 살아있는지만 확인."""
    if not _is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is shutting down",
        )
    return {"status": "alive"}


@router.get("/readiness", summary="Readiness probe (Kubernetes)")
async def readiness_probe() -> Dict[str, str]:
    """요청을 처리할 준비가 되었는지 확인 (DB 포함)."""
    if not _is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is not ready",
        )

    try:
        await _check_db()
    except Exception as e:
        logger.warning(
            "Readiness check failed: DB",
            extra={"event": "health", "error": str(e)[:200] or type(e).__name__},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        )

    return {"status": "ready"}
