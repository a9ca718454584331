"""
Per-IP rate limiting using slowapi.
Protects password verification against brute force and direct links against scraping.

API 키 단위 쿼터(분/시간)는 app.services.rate_limiter가 담당한다.
여기서는 IP 기준 단기 제한만 다룬다.
"""
import logging
import time
from typing import Callable, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from limits import parse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from app.config import get_settings
from app.exceptions import RateLimited
from app.utils.client_ip import get_client_ip
from app.utils.prometheus_metrics import rate_limit_hits_total

logger = logging.getLogger("app.rate_limit")
settings = get_settings()


def get_client_identifier(request: Request) -> str:
    """Rate limiting key: the real client IP behind proxies."""
    return get_client_ip(request) or "unknown"


# 메모리 기반 (인스턴스별 제한)
limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri="memory://",
    enabled=settings.rate_limit_enabled,
)


def _limit_headers(limit: int, remaining: int, reset_seconds: int) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(max(0, remaining)),
        "X-RateLimit-Reset": str(reset_seconds),
        "Retry-After": str(reset_seconds),
    }


def enforce_ip_limit(request: Request, limit: str, scope: str) -> None:
    """
    Count one hit for the client IP in scope; raise RateLimited when exceeded.

    Used inside handlers whose limit depends on the resolved action
    (a decorator would apply to every action of the endpoint).
    """
    if not settings.rate_limit_enabled:
        return

    item = parse(limit)
    client_id = get_client_identifier(request)
    if limiter.limiter.hit(item, scope, client_id):
        return

    stats = limiter.limiter.get_window_stats(item, scope, client_id)
    reset_seconds = max(1, int(stats.reset_time - time.time()))
    rate_limit_hits_total.labels(endpoint=scope).inc()
    logger.warning(
        "Rate limit exceeded",
        extra={"event": "rate_limit", "client_id": client_id, "endpoint": scope, "limit": limit},
    )
    raise RateLimited(
        retry_after=reset_seconds,
        headers=_limit_headers(item.amount, stats.remaining, reset_seconds),
    )


def setup_rate_limit_exception_handler(app) -> None:
    """
    Register the slowapi limiter and its exceeded handler.
    The response uses the same error payload as every other API error.
    """
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        endpoint = request.url.path
        client_id = get_client_identifier(request)
        rate_limit_hits_total.labels(endpoint=endpoint).inc()
        logger.warning(
            "Rate limit exceeded",
            extra={
                "event": "rate_limit",
                "client_id": client_id,
                "endpoint": endpoint,
                "limit": str(exc.detail),
            },
        )

        limit_item = exc.limit.limit
        reset_seconds = int(limit_item.get_expiry())
        error = RateLimited(retry_after=reset_seconds)
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_payload(),
            headers=_limit_headers(limit_item.amount, 0, reset_seconds),
        )


def get_rate_limit_decorator(limit: str):
    """
    Rate limit 데코레이터 생성 헬퍼.

    Args:
        limit: Rate limit 문자열 (예: "10/minute", "120/minute")

    Returns:
        Rate limit 데코레이터 (비활성화 시 그대로 반환)
    """
    if not settings.rate_limit_enabled:
        def noop_decorator(func: Callable) -> Callable:
            return func
        return noop_decorator

    return limiter.limit(limit)
