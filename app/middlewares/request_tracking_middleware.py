"""
진행 중인 요청 추적 미들웨어.

Graceful shutdown 시 진행 중인 요청이 끝날 때까지 기다리기 위해 사용합니다.
"""
import asyncio
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.prometheus_metrics import in_flight_requests

logger = logging.getLogger("app.request_tracking")

# Health check는 shutdown 중에도 응답해야 하므로 제외
EXCLUDED_PATHS = {"/health/", "/health/liveness", "/health/readiness"}

_in_flight = 0


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Counts requests between arrival and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        global _in_flight
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        # 단일 이벤트 루프에서만 변경되므로 잠금 불필요
        _in_flight += 1
        in_flight_requests.set(_in_flight)
        try:
            return await call_next(request)
        finally:
            _in_flight = max(0, _in_flight - 1)
            in_flight_requests.set(_in_flight)


async def wait_for_requests(timeout: float = 30.0) -> bool:
    """
    진행 중인 요청이 완료될 때까지 대기.

    Returns:
        True: 모든 요청 완료, False: 타임아웃
    """
    start_time = time.monotonic()
    while _in_flight > 0:
        if time.monotonic() - start_time >= timeout:
            logger.warning(
                "Timeout waiting for requests",
                extra={"event": "lifecycle", "remaining_requests": _in_flight, "timeout": timeout},
            )
            return False
        await asyncio.sleep(0.5)

    logger.info("All in-flight requests completed", extra={"event": "lifecycle"})
    return True
