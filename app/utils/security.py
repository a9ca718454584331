"""
Security utility functions: share ids, API keys and one-way digests.

digest()는 솔트 없는 SHA-256 (hex)이며 비밀번호, API 키, rate limit 버킷 키에 동일하게 사용한다.
조회가 digest 일치로 이루어지므로 결정적이어야 한다. 같은 비밀번호를 쓰는 두 공유는
같은 해시를 갖는다 (알려진 약점, 기존 데이터와의 호환을 위해 유지).
"""
import hashlib
import hmac
import secrets
import string
import time
from typing import Optional

# 8자리 소문자 hex
SHARE_ID_BYTES = 4

API_KEY_ALPHABET = string.ascii_letters + string.digits
API_KEY_LENGTH = 32
API_KEY_DISPLAY_LENGTH = 7


def generate_share_id() -> str:
    """
    Generate a short URL-safe identifier for a new share.

    Collisions are handled by the caller (insert fails on the primary key,
    retry with a new id).
    """
    return secrets.token_hex(SHARE_ID_BYTES)


def digest(secret: str) -> str:
    """
    Deterministic one-way hash (SHA-256, hex encoded).

    Args:
        secret: Password, raw API key, or rate-limit bucket key

    Returns:
        64-character lowercase hex digest
    """
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def verify_digest(secret: str, expected_hash: Optional[str]) -> bool:
    """Constant-time comparison of digest(secret) against a stored hash."""
    if not expected_hash:
        return False
    return hmac.compare_digest(digest(secret), expected_hash)


def generate_api_key(prefix: str) -> str:
    """
    Generate a new API key: <prefix><32 random alphanumerics>.

    Args:
        prefix: Key prefix including the separator (e.g. "op_")
    """
    body = "".join(secrets.choice(API_KEY_ALPHABET) for _ in range(API_KEY_LENGTH))
    return f"{prefix}{body}"


def api_key_display_prefix(api_key: str) -> str:
    """Non-secret fragment shown in listings."""
    return api_key[:API_KEY_DISPLAY_LENGTH]


def generate_file_path(user_id: Optional[str]) -> str:
    """
    Generate an object storage path for an uploaded file.

    Format: {user_id|anonymous}/{epoch_ms}-{random}
    """
    owner = user_id or "anonymous"
    return f"{owner}/{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def anonymous_bucket_key(client_ip: Optional[str]) -> str:
    """Rate-limit bucket for callers without an API key."""
    return digest(f"ip:{client_ip or 'unknown'}")
