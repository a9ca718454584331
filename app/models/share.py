"""
Share model: one text paste or one uploaded file and its access-control state.
Uploaded file bytes live in Object Storage; only metadata is stored here.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.utils.expiration import is_expired, utcnow


class ContentType(str, enum.Enum):
    """Classifies whether content or file_path is authoritative."""
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    ARCHIVE = "archive"


class Share(Base):
    """
    Share model.

    - password_hash가 있으면 비밀번호 검증 전에는 본문/파일 정보를 반환하지 않음
    - burn_after_read는 생성 후 변경 불가, 첫 공개 시 행 삭제
    - expires_at이 지나면 물리 삭제 여부와 무관하게 접근 불가 (soft expiry)
    """

    __tablename__ = "shares"

    # 짧은 공개 ID (URL에 노출)
    id: Mapped[str] = mapped_column(String(16), primary_key=True)

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    syntax: Mapped[str] = mapped_column(String(32), nullable=False, default="plaintext")
    content_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ContentType.TEXT.value
    )

    # File upload metadata (content_type != text)
    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    file_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Access control
    password_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    burn_after_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Statistics
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    # 익명 공유 허용 (외부 ID 제공자의 사용자 ID)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    @property
    def is_protected(self) -> bool:
        return self.password_hash is not None

    @property
    def is_file(self) -> bool:
        return self.content_type != ContentType.TEXT.value

    def is_expired_at(self, now: datetime) -> bool:
        """Check if the share is soft-expired at the given time."""
        return is_expired(self.expires_at, now)

    def __repr__(self) -> str:
        return f"<Share(id={self.id}, content_type={self.content_type})>"
