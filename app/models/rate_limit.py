"""
Per-minute request counters for API quotas.
"""
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class RateLimitCounter(Base):
    """
    One row per (api_key_hash, minute-aligned window).
    The hourly count is the sum of the rows of the last hour.
    """

    __tablename__ = "api_rate_limits"
    __table_args__ = (
        UniqueConstraint("api_key_hash", "window_start", name="uq_rate_limit_window"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    api_key_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<RateLimitCounter(key={self.api_key_hash[:8]}..., "
            f"window={self.window_start}, count={self.request_count})>"
        )
