"""
Domain errors for the share API.

Each error has a stable machine-readable kind, an HTTP status and a
human-readable message. Messages never contain passwords or share content.
"""
from typing import Dict, Optional

from fastapi import status

from app.utils.logger import get_request_id


class ShareError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"
    # 응답에 추가할 헤더 (쿼터 헤더 등)
    headers: Optional[Dict[str, str]] = None

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, object]:
        return {"error": self.message, "kind": self.kind}


class InvalidInput(ShareError):
    kind = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class NotFound(ShareError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Share not found"


class Expired(ShareError):
    kind = "expired"
    status_code = status.HTTP_410_GONE
    default_message = "Share has expired"


class InvalidPassword(ShareError):
    kind = "invalid_password"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid password"


class Forbidden(ShareError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class Unauthorized(ShareError):
    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint

    def to_payload(self) -> Dict[str, object]:
        payload = super().to_payload()
        if self.hint:
            payload["message"] = self.hint
        return payload


class PayloadTooLarge(InvalidInput):
    status_code = 413
    default_message = "File too large"


class MethodNotAllowed(ShareError):
    kind = "method_not_allowed"
    status_code = status.HTTP_405_METHOD_NOT_ALLOWED
    default_message = "Method not allowed"


class RateLimited(ShareError):
    kind = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"

    def __init__(self, retry_after: int, headers: Optional[Dict[str, str]] = None):
        super().__init__()
        self.retry_after = retry_after
        self.headers = headers or {}

    def to_payload(self) -> Dict[str, object]:
        payload = super().to_payload()
        payload["retry_after"] = self.retry_after
        return payload


class StorageError(ShareError):
    """Object storage failure. Surfaces as a generic internal error."""

    kind = "internal"


class Internal(ShareError):
    """Unexpected store failure inside an API action."""

    def to_payload(self) -> Dict[str, object]:
        payload = super().to_payload()
        payload["request_id"] = get_request_id()
        return payload
