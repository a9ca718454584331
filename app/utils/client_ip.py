"""
클라이언트 IP 추출 유틸리티.

익명 호출자의 쿼터 버킷과 IP 기준 rate limit 키로 사용한다.
"""
from typing import Optional

from fastapi import Request

# 확인 순서 (앞쪽 우선)
_PROXY_HEADERS = ("X-Real-IP", "CF-Connecting-IP", "True-Client-IP")


def get_client_ip(request: Request) -> Optional[str]:
    """
    Extract the real client IP behind proxies and load balancers.

    Order: X-Forwarded-For (first entry), X-Real-IP, CF-Connecting-IP,
    True-Client-IP, then the direct peer address.

    Security:
        These headers are spoofable. The load balancer must strip them from
        external requests and set them itself.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # "client, proxy1, proxy2"
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip

    for header in _PROXY_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    if request.client:
        return request.client.host

    return None
