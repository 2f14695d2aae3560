"""Canonical question: one deduplicated real-world yes/no question."""

from datetime import date, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from app.core.config import get_settings
from app.models.base import Base, TimestampMixin

RESOLUTION_OPEN = "open"
RESOLUTION_YES = "resolved_yes"
RESOLUTION_NO = "resolved_no"
RESOLUTION_VOIDED = "voided"

OUTCOME_BINARY = "binary"
OUTCOME_PRICE_BRACKET = "price_bracket"
OUTCOME_CATEGORICAL = "categorical"

EMBEDDING_DIMENSIONS = get_settings().embedding_dimensions


class Event(TimestampMixin, Base):
    """Fused, platform-independent view of a question.

    The fused_* / change / spread columns are denormalized by the
    aggregator every cycle.  Rows are deactivated, never deleted.
    """

    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint(
            "probability IS NULL OR (probability >= 0 AND probability <= 1)",
            name="ck_events_probability_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    subcategory: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(ARRAY(String(64)), nullable=True)
    resolution_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    resolution_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RESOLUTION_OPEN, index=True
    )  # open | resolved_yes | resolved_no | voided
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    parent_event_id: Mapped[str | None] = mapped_column(
        String(255), ForeignKey("events.id"), nullable=True, index=True
    )
    outcome_type: Mapped[str] = mapped_column(String(20), nullable=False, default=OUTCOME_BINARY)
    outcome_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    outcome_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    probability: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    liquidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    num_traders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    change_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    change_7d: Mapped[float | None] = mapped_column(Float, nullable=True)
    change_30d: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_30d: Mapped[float | None] = mapped_column(Float, nullable=True)
    low_30d: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_spread: Mapped[float | None] = mapped_column(Float, nullable=True)
    outlier_platforms: Mapped[list[str] | None] = mapped_column(ARRAY(String(64)), nullable=True)
    aggregated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)


Index(
    "ix_events_active_status_parent",
    Event.is_active,
    Event.resolution_status,
    Event.parent_event_id,
)
