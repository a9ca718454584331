"""
구조화된 로깅 미들웨어.

모든 HTTP 요청에 Request ID를 부여하고 실패/지연 요청을 로깅합니다.
"""
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.client_ip import get_client_ip
from app.utils.logger import log_error, log_warning, set_request_id

# 느린 응답 임계값 (ms)
SLOW_REQUEST_THRESHOLD_MS = 3000

REQUEST_ID_HEADER = "X-Request-ID"

# 로깅 제외할 경로
EXCLUDED_PATHS = {"/health/", "/health/liveness", "/health/readiness", "/docs", "/openapi.json", "/metrics"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.

    로깅 기준 (운영 노이즈 최소화):
    - 5xx → ERROR
    - 4xx → WARNING (잘못된 API 키, 틀린 비밀번호, 쿼터 초과 포함)
    - 3초 이상 → WARNING
    - 정상 응답 → 로깅 안 함

    Query string은 로깅하지 않는다 (공유 ID 외 정보가 실릴 수 있음).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        rid = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        context = {
            "http_method": request.method,
            "http_path": request.url.path,
            "client_ip": get_client_ip(request),
            "user_agent": request.headers.get("user-agent"),
            "request_id": rid,
            "event": "request",
        }
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            # global exception handler가 응답을 만든다
            log_error(
                "Request exception",
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                exc_info=True,
                **context,
            )
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = rid
        status_code = response.status_code

        if status_code >= 500:
            log_error(
                "Request error - Server error occurred",
                error_code=f"HTTP_{status_code}",
                http_status=status_code,
                duration_ms=duration_ms,
                **context,
            )
        elif status_code >= 400:
            log_warning(
                "Request failed - Client error",
                http_status=status_code,
                duration_ms=duration_ms,
                **context,
            )
        elif duration_ms >= SLOW_REQUEST_THRESHOLD_MS:
            log_warning(
                "Slow request detected",
                http_status=status_code,
                duration_ms=duration_ms,
                performance_issue=True,
                **context,
            )

        return response
