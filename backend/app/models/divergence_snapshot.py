"""Per-cycle price disagreement between two platforms on one event."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class DivergenceSnapshot(Base):
    """Append-only.  ``platform_a`` < ``platform_b`` lexicographically."""

    __tablename__ = "divergence_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    platform_a: Mapped[str] = mapped_column(String(32), nullable=False)
    platform_b: Mapped[str] = mapped_column(String(32), nullable=False)
    price_a: Mapped[float] = mapped_column(Float, nullable=False)
    price_b: Mapped[float] = mapped_column(Float, nullable=False)
    spread: Mapped[float] = mapped_column(Float, nullable=False)
    higher_platform: Mapped[str] = mapped_column(String(32), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True
    )


Index(
    "ix_divergence_snapshots_event_captured_desc",
    DivergenceSnapshot.event_id,
    DivergenceSnapshot.captured_at.desc(),
)
