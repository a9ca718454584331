"""
FastAPI Pastely API Application.

Main application entry point that configures:
- CORS (모든 출처 허용, preflight 204)
- API routers (share API, direct links, API keys, health)
- Database lifecycle
- Logging system
- Exception handlers (도메인 오류 → {"error", "kind"})
- Prometheus metrics (스크래핑 + 선택적 Pushgateway)
- Graceful shutdown (Autoscaling 환경 최적화)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.database import close_db, init_db
from app.exceptions import InvalidInput, ShareError
from app.middlewares.cors_middleware import setup_cors
from app.middlewares.logging_middleware import LoggingMiddleware
from app.middlewares.rate_limit_middleware import setup_rate_limit_exception_handler
from app.middlewares.request_tracking_middleware import RequestTrackingMiddleware, wait_for_requests
from app.routers import health_router, keys_router, links_router, pastes_router
from app.routers.pastes import API_PREFIXES
from app.services.share import share_reaper_loop
from app.utils.background import drain
from app.utils.logger import get_request_id, log_error, log_info, setup_logging
from app.utils.prometheus_metrics import exceptions_total, pushgateway_loop, ready, setup_prometheus

settings = get_settings()
logger = logging.getLogger("app")

# Python logging 설정
setup_logging()

# 진행 중인 요청 최대 대기 시간 (초)
SHUTDOWN_GRACE_SECONDS = 30.0


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan with graceful shutdown for autoscaling.

    Graceful shutdown 흐름:
    1. uvicorn이 SIGTERM/SIGINT 수신 후 lifespan 종료 진입
    2. Health check 즉시 실패 (ready=0)
    3. 진행 중인 요청 완료 대기 (최대 30초)
    4. 백그라운드 작업 종료 (Pushgateway, reaper, blob 삭제)
    5. DB 연결 종료
    """
    # 설정 검증 (프로덕션 환경에서만)
    if settings.is_production:
        from app.utils.config_validator import validate_all_config

        config_ok, config_errors = await validate_all_config()
        if not config_ok:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in config_errors)
            log_error(
                "Startup failed: configuration validation errors",
                error_message=error_msg,
                event="lifecycle",
            )
            raise RuntimeError(error_msg)
        log_info("Configuration validation passed", event="lifecycle")

    await init_db()

    pushgateway_task = asyncio.create_task(pushgateway_loop())
    reaper_task = asyncio.create_task(share_reaper_loop())

    ready.set(1)
    log_info(
        "Application startup completed",
        event="lifecycle",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    yield

    ready.set(0)
    log_info("Application shutdown initiated", event="lifecycle")

    await wait_for_requests(timeout=SHUTDOWN_GRACE_SECONDS)

    await _cancel(pushgateway_task)
    await _cancel(reaper_task)
    # 예약된 blob 삭제/쿼터 정리 마무리
    await drain()

    await close_db()
    log_info("Graceful shutdown completed", event="lifecycle")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
## Pastely API

Share text and files by link, optionally password protected or burned after the first read.

### Authentication
`Authorization: Bearer <api key>`. Reading shares needs no key; listing and deleting do.
Keys are issued from the dashboard.

### Limits
60 requests per minute and 1000 per hour per key (anonymous callers per IP).
Every response carries `X-RateLimit-Limit`, `X-RateLimit-Remaining` and `X-RateLimit-Reset`.
    """,
    openapi_tags=[
        {"name": "Pastes", "description": "Create, read, list and delete shares"},
        {"name": "Direct Links", "description": "Raw text, direct file and embed links"},
        {"name": "API Keys", "description": "API key management (dashboard backend only)"},
        {"name": "Health", "description": "Load balancer and Kubernetes probes"},
    ],
    lifespan=lifespan,
)

# Prometheus: FastAPI metrics + node info at /metrics
setup_prometheus(app)

# Rate limiting (IP 기준): limiter 등록 + 예외 처리 핸들러
setup_rate_limit_exception_handler(app)

app.add_middleware(LoggingMiddleware)
# 진행 중인 요청 추적: Graceful shutdown을 위한 요청 카운트
app.add_middleware(RequestTrackingMiddleware)
# CORS는 가장 바깥쪽 (오류 응답에도 헤더 포함)
setup_cors(app)


@app.exception_handler(ShareError)
async def share_error_handler(request: Request, exc: ShareError):
    """Domain errors: stable kind + message, never content or passwords."""
    if exc.status_code >= 500:
        exceptions_total.inc()
        log_error(
            "Share operation failed",
            error_type=type(exc).__name__,
            error_message=exc.message,
            http_method=request.method,
            http_path=request.url.path,
            request_id=get_request_id(),
            event="exception",
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Request validation errors use the same payload as InvalidInput."""
    errors = exc.errors()
    message = InvalidInput.default_message
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()))
        message = f"{location}: {errors[0].get('msg')}"
    error = InvalidInput(message)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Unhandled exception handler with structured logging.

    모든 처리되지 않은 예외를 캐치하여:
    - ERROR 로그 남김
    - 500 응답 반환 (내부 정보 미노출)
    - Request ID 포함 (장애 추적용)
    """
    exceptions_total.inc()
    rid = get_request_id()

    log_error(
        "Unhandled exception occurred",
        error_type=type(exc).__name__,
        error_message=str(exc)[:200],
        error_code="INTERNAL_SERVER_ERROR",
        http_method=request.method,
        http_path=request.url.path,
        request_id=rid,
        event="exception",
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "kind": "internal",
            "request_id": rid,
        },
    )


# Include routers
app.include_router(health_router)
for prefix in API_PREFIXES:
    app.include_router(pastes_router, prefix=prefix)
app.include_router(links_router)
app.include_router(keys_router)


@app.get("/", tags=["Root"], summary="API information")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "api": API_PREFIXES[0],
    }
