"""Append-only ledger of fused and per-platform probability observations."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base

AGGREGATED_SOURCE = "aggregated"


class ProbabilitySnapshot(Base):
    """Immutable observation.

    ``source`` is either ``"aggregated"`` (the fused value) or a platform
    slug.  Per-platform rows always carry *total* volume so 24h deltas can
    be derived from consecutive rows.
    """

    __tablename__ = "probability_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    probability: Mapped[float] = mapped_column(Float, nullable=False)
    volume: Mapped[float | None] = mapped_column(Float, nullable=True)
    liquidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    num_traders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True
    )


Index(
    "ix_probability_snapshots_event_source_captured_desc",
    ProbabilitySnapshot.event_id,
    ProbabilitySnapshot.source,
    ProbabilitySnapshot.captured_at.desc(),
)
