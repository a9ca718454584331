"""
Expiration token resolution for shares.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

# 지원하는 만료 토큰 (never는 만료 없음)
EXPIRATION_DELTAS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "1d": timedelta(days=1),
    "1w": timedelta(days=7),
    "1m": timedelta(days=30),
    "3m": timedelta(days=90),
    "1y": timedelta(days=365),
}

NEVER = "never"


def utcnow() -> datetime:
    """Naive UTC now. All timestamps in the store are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_expiration(token: Optional[str], now: datetime) -> Optional[datetime]:
    """
    Map an expiration token to an absolute timestamp.

    Args:
        token: One of never, 1h, 1d, 1w, 1m, 3m, 1y
        now: Reference time

    Returns:
        now + delta, or None (never expires) for "never", empty
        and unrecognized tokens
    """
    if not token:
        return None
    delta = EXPIRATION_DELTAS.get(token)
    if delta is None:
        return None
    return now + delta


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    """A share is expired once now reaches expires_at."""
    return expires_at is not None and expires_at <= now
