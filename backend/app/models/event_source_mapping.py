"""Audit trail of (platform, native id) -> event assignments."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base

CONFIDENCE_AI_VERIFIED = "ai-verified"
CONFIDENCE_EMBEDDING_LLM_VERIFIED = "embedding+llm-verified"


class EventSourceMapping(Base):
    """One row per (platform, platform_contract_id); overwritten on re-map."""

    __tablename__ = "event_source_mappings"
    __table_args__ = (
        UniqueConstraint(
            "platform",
            "platform_contract_id",
            name="uq_event_source_mappings_platform_contract",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("events.id"), nullable=False, index=True
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    platform_contract_id: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[str] = mapped_column(String(40), nullable=False)
    mapped_by: Mapped[str] = mapped_column(String(120), nullable=False)
    mapped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
