"""
Application configuration using Pydantic Settings.
Manages all environment variables and settings.
"""
from enum import Enum
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./pastely.db"


class Environment(str, Enum):
    """Application environment modes."""
    DEV = "DEV"
    PRODUCTION = "PRODUCTION"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Environment = Field(
        default=Environment.DEV,
        description="Application environment: DEV or PRODUCTION"
    )

    # Application
    app_name: str = Field(default="Pastely API")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    @model_validator(mode='after')
    def set_debug_from_environment(self):
        """Set debug mode based on environment if not explicitly set via environment variable."""
        # DEBUG 환경 변수가 명시적으로 설정되지 않은 경우에만 환경 모드에 따라 설정
        import os
        if 'DEBUG' not in os.environ:
            self.debug = self.environment == Environment.DEV
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    # Database (빈 문자열이면 기본값 사용)
    database_url: str = Field(default=DEFAULT_DATABASE_URL)
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    @field_validator("database_url", mode="before")
    @classmethod
    def coerce_empty_database_url(cls, v: str) -> str:
        if not v or not str(v).strip():
            return DEFAULT_DATABASE_URL
        return v

    # 공유 URL 생성용 (프론트엔드 도메인). 예: {site_url}/p/{id}
    site_url: str = Field(default="https://pastely.app")

    @field_validator("site_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # S3 호환 Object Storage (업로드 파일 원본 저장)
    storage_endpoint_url: str = Field(default="", description="S3 API Endpoint URL (비우면 AWS 기본)")
    storage_access_key: str = Field(default="", description="S3 API Access Key")
    storage_secret_key: str = Field(default="", description="S3 API Secret Key")
    storage_region_name: str = Field(default="us-east-1", description="S3 Region Name")
    storage_bucket: str = Field(default="uploads", description="업로드 파일을 저장할 버킷")

    # API Key
    api_key_prefix: str = Field(default="op_", description="새로 발급하는 API 키의 접두사")
    api_key_legacy_prefixes: List[str] = Field(
        default=["ts_"],
        description="이전에 발급된 키의 접두사 (하위 호환). JSON 배열로 설정",
    )
    admin_api_token: str = Field(
        default="",
        description="API 키 관리 라우터 접근용 토큰 (대시보드 백엔드). 비우면 관리 API 비활성화",
    )

    # API 쿼터 (API 키 해시 기준, DB 카운터)
    api_rate_limit_per_minute: int = Field(default=60)
    api_rate_limit_per_hour: int = Field(default=1000)
    api_rate_limit_retention_minutes: int = Field(default=120)
    api_rate_limit_cleanup_probability: float = Field(default=0.01, ge=0.0, le=1.0)

    # IP 기준 rate limiting (slowapi): 비밀번호 검증 브루트포스, 직접 링크 남용 방지
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_verify_per_minute: int = Field(default=10)
    rate_limit_links_per_minute: int = Field(default=120)

    # Shares
    allow_anonymous_create: bool = Field(
        default=False,
        description="True면 API 키 없이 create/upload 허용 (IP 기준 쿼터 적용)",
    )
    list_page_size: int = Field(default=100)
    share_reaper_interval_seconds: int = Field(
        default=0,
        description="만료된 공유 정리 주기(초). 0이면 비활성화 (정리는 정확성과 무관)",
    )

    # Logging
    log_dir: str = Field(default="/var/log/pastely")
    # 인스턴스 식별용 사설 IP (로그·메트릭용). 비우면 hostname 사용
    instance_ip: str = Field(default="", description="서버 사설 IP (비우면 자동 감지)")

    # Prometheus
    node_name: str = Field(default="", description="Node/Pod identifier for Prometheus labels")
    prometheus_pushgateway_url: str = Field(
        default="",
        description="Prometheus Pushgateway URL (e.g. http://pushgateway:9091). 비우면 푸시 안 함.",
    )
    prometheus_push_interval_seconds: int = Field(
        default=30,
        description="Pushgateway로 메트릭 전송 주기(초). prometheus_pushgateway_url 설정 시에만 사용.",
    )

    @field_validator("prometheus_push_interval_seconds", mode="before")
    @classmethod
    def coerce_push_interval(cls, v: object) -> int:
        if v is None or v == "":
            return 30
        return int(v)

    @property
    def accepted_api_key_prefixes(self) -> tuple:
        """Current prefix first, then legacy prefixes still honoured."""
        return (self.api_key_prefix, *self.api_key_legacy_prefixes)

    class Config:
        # 환경변수만 사용 (.env 파일 미사용)
        env_file = None
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Using lru_cache to avoid reading the environment on every request.
    """
    return Settings()
