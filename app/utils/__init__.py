"""
Utility functions package.
"""
from app.utils.security import (
    digest,
    verify_digest,
    generate_share_id,
    generate_api_key,
)
from app.utils.expiration import resolve_expiration, is_expired, utcnow

__all__ = [
    "digest",
    "verify_digest",
    "generate_share_id",
    "generate_api_key",
    "resolve_expiration",
    "is_expired",
    "utcnow",
]
