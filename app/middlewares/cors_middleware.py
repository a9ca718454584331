"""
CORS 설정.

API는 모든 출처의 호출을 허용한다 (브라우저/서드파티 클라이언트).
Preflight(OPTIONS)는 본문 없이 204로 응답한다.
"""
from typing import Callable

from fastapi import Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-admin-token",
    "x-request-id",
]
ALLOW_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]
EXPOSE_HEADERS = [
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
    "X-Request-ID",
]

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ", ".join(ALLOW_HEADERS),
    "Access-Control-Allow-Methods": ", ".join(ALLOW_METHODS),
    "Access-Control-Max-Age": "86400",
}


class PreflightMiddleware(BaseHTTPMiddleware):
    """Answers every OPTIONS request with 204 and the CORS allow-list."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)
        return await call_next(request)


def setup_cors(app) -> None:
    # 나중에 추가한 미들웨어가 바깥쪽: preflight는 CORSMiddleware보다 먼저 처리
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=ALLOW_METHODS,
        allow_headers=ALLOW_HEADERS,
        expose_headers=EXPOSE_HEADERS,
    )
    app.add_middleware(PreflightMiddleware)
