"""
Services package.
Contains business logic and external service integrations.
"""
from app.services.object_storage import ObjectStorageService
from app.services.api_key import ApiKeyService
from app.services.rate_limiter import ApiRateLimiter
from app.services.share import ShareService

__all__ = [
    "ObjectStorageService",
    "ApiKeyService",
    "ApiRateLimiter",
    "ShareService",
]
