from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Integer, SmallInteger, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from keyword_engine.db.base import Base


class KeywordSearchVolume(Base):
    """Shared popularity estimate per (term, platform, region). Not tenant-scoped."""

    __tablename__ = "keyword_search_volumes"
    __table_args__ = (UniqueConstraint("keyword", "platform", "region", name="uq_search_volume_term"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    keyword: Mapped[str] = mapped_column(String(100), nullable=False)
    platform: Mapped[str] = mapped_column(String(10), nullable=False)
    region: Mapped[str] = mapped_column(String(5), nullable=False)
    estimated_monthly_searches: Mapped[int] = mapped_column(Integer, default=0)
    popularity_score: Mapped[int] = mapped_column(SmallInteger, default=0)  # 0-100
    competition_level: Mapped[str] = mapped_column(String(20), default="low")  # low | medium | high | very_high
    signals: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    data_source: Mapped[str] = mapped_column(String(30), default="serp_heuristic")
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
