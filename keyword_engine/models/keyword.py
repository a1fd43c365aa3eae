from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keyword_engine.db.base import Base


class Keyword(Base):
    """A tracked (or formerly tracked) search term for one app. Never hard-deleted while history exists."""

    __tablename__ = "keywords"
    __table_args__ = (UniqueConstraint("app_id", "keyword", "platform", "region", name="uq_app_keyword_platform_region"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    app_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(String(100), nullable=False)
    platform: Mapped[str] = mapped_column(String(10), nullable=False, default="ios")  # ios | android
    region: Mapped[str] = mapped_column(String(5), nullable=False, default="us")
    is_tracked: Mapped[bool] = mapped_column(Boolean, default=True)
    discovery_method: Mapped[str] = mapped_column(String(20), default="manual")  # manual | generated | trending
    generation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_tracked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    rankings: Mapped[list["KeywordRanking"]] = relationship(  # noqa: F821
        "KeywordRanking", back_populates="keyword", cascade="all, delete-orphan"
    )
