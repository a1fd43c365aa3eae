from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, ForeignKey, Integer, SmallInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from keyword_engine.db.base import Base


class CompetitorKeyword(Base):
    """A competitor app's observed position for one of our keywords on a date."""

    __tablename__ = "competitor_keywords"
    __table_args__ = (
        UniqueConstraint("keyword_id", "competitor_app_id", "snapshot_date", name="uq_competitor_keyword_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    keyword_id: Mapped[int] = mapped_column(
        ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False, index=True
    )
    competitor_app_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    competitor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    collected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
