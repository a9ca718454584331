"""
설정 검증 유틸리티.

애플리케이션 시작 시 필수 설정을 검증합니다.
프로덕션 환경에서만 실행됩니다.
"""
import logging
from typing import List, Tuple
from urllib.parse import urlparse

from sqlalchemy import text

from app.config import Settings, get_settings
from app.database import engine

logger = logging.getLogger("app.config_validator")


async def validate_all_config() -> Tuple[bool, List[str]]:
    """
    Validate production configuration.

    Returns:
        (ok, errors). Startup is aborted by the caller when ok is False.
    """
    settings = get_settings()
    logger.info("Starting configuration validation", extra={"event": "config"})

    errors: List[str] = []
    errors.extend(await _validate_database())
    errors.extend(_validate_storage_config(settings))
    errors.extend(_validate_site_config(settings))
    errors.extend(_validate_admin_config(settings))

    if errors:
        logger.error(
            "Configuration validation failed",
            extra={"event": "config", "errors": errors},
        )
    return not errors, errors


async def _validate_database() -> List[str]:
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database connection failed", extra={"event": "config"}, exc_info=True)
        return [f"Database connection failed: {str(e)[:200]}"]
    logger.info("Database connection: OK", extra={"event": "config"})
    return []


def _validate_storage_config(settings: Settings) -> List[str]:
    """Object Storage 설정 검증 (파일 업로드/다운로드에 필요)."""
    errors: List[str] = []
    if not settings.storage_access_key:
        errors.append("STORAGE_ACCESS_KEY is required")
    if not settings.storage_secret_key:
        errors.append("STORAGE_SECRET_KEY is required")
    if not settings.storage_bucket:
        errors.append("STORAGE_BUCKET is required")

    # 엔드포인트가 없으면 AWS S3 기본 엔드포인트 사용
    if not settings.storage_endpoint_url:
        logger.info("STORAGE_ENDPOINT_URL not set, using AWS S3", extra={"event": "config"})
    return errors


def _validate_site_config(settings: Settings) -> List[str]:
    """공유 URL 생성용 site_url 검증."""
    parsed = urlparse(settings.site_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return [f"SITE_URL must be an absolute http(s) URL: {settings.site_url!r}"]
    if parsed.scheme == "http":
        logger.warning("SITE_URL is not https", extra={"event": "config"})
    return []


def _validate_admin_config(settings: Settings) -> List[str]:
    # 비어 있으면 키 관리 API가 모두 401 (의도치 않은 잠김 방지)
    if not settings.admin_api_token:
        return ["ADMIN_API_TOKEN is required (API key management is unreachable without it)"]
    return []
