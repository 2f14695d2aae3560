"""One marketplace listing, optionally linked to a canonical event."""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.models.event import EMBEDDING_DIMENSIONS


class SourceContract(TimestampMixin, Base):
    """Written by the ingestion adapters; linked/stamped by the matcher.

    ``volume_total`` / ``volume_24h`` are in the platform's native unit
    (notional for most platforms, contract counts for raw-count ones).
    """

    __tablename__ = "source_contracts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    platform_contract_id: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_24h: Mapped[float | None] = mapped_column(Float, nullable=True)
    volume_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    liquidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    num_traders: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_trade_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    event_id: Mapped[str | None] = mapped_column(
        String(255), ForeignKey("events.id"), nullable=True, index=True
    )
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    match_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# At most one active listing per (platform, native id).
Index(
    "uq_source_contracts_active_platform_contract",
    SourceContract.platform,
    SourceContract.platform_contract_id,
    unique=True,
    postgresql_where=text("is_active"),
)
Index(
    "ix_source_contracts_unmapped_backlog",
    SourceContract.is_active,
    SourceContract.event_id,
    SourceContract.match_checked_at,
)
