from datetime import date, datetime, timezone

from sqlalchemy import JSON, BigInteger, Boolean, Date, DateTime, Float, ForeignKey, Integer, SmallInteger, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keyword_engine.db.base import Base


class KeywordRanking(Base):
    """Position snapshot per keyword×date. Insert-only: one row per (keyword, date)."""

    __tablename__ = "keyword_rankings"
    __table_args__ = (UniqueConstraint("keyword_id", "snapshot_date", name="uq_keyword_ranking_date"),)

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    keyword_id: Mapped[int] = mapped_column(
        ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False, index=True
    )
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    position: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)  # None = not in tracked range
    is_ranking: Mapped[bool] = mapped_column(Boolean, default=False)
    serp_snapshot: Mapped[list | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )  # top result app ids
    estimated_search_volume: Mapped[int] = mapped_column(Integer, default=0)
    visibility_score: Mapped[float] = mapped_column(Float, default=0.0)
    estimated_traffic: Mapped[float] = mapped_column(Float, default=0.0)
    position_change: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    trend: Mapped[str] = mapped_column(String(20), nullable=False)  # up | down | stable | new | lost | not_ranking
    max_tracked_position: Mapped[int] = mapped_column(SmallInteger, default=50)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    keyword: Mapped["Keyword"] = relationship("Keyword", back_populates="rankings")  # noqa: F821
