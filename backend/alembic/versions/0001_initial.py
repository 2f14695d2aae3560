"""initial fusion schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 512


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("subcategory", sa.String(length=64), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String(length=64)), nullable=True),
        sa.Column("resolution_date", sa.Date(), nullable=True),
        sa.Column("resolution_status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("parent_event_id", sa.String(length=255), sa.ForeignKey("events.id"), nullable=True),
        sa.Column("outcome_type", sa.String(length=20), nullable=False, server_default="binary"),
        sa.Column("outcome_label", sa.String(length=255), nullable=True),
        sa.Column("outcome_index", sa.Integer(), nullable=True),
        sa.Column("probability", sa.Float(), nullable=True),
        sa.Column("volume_24h", sa.Float(), nullable=True),
        sa.Column("volume_total", sa.Float(), nullable=True),
        sa.Column("liquidity", sa.Float(), nullable=True),
        sa.Column("num_traders", sa.Integer(), nullable=True),
        sa.Column("source_count", sa.Integer(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("change_24h", sa.Float(), nullable=True),
        sa.Column("change_7d", sa.Float(), nullable=True),
        sa.Column("change_30d", sa.Float(), nullable=True),
        sa.Column("high_30d", sa.Float(), nullable=True),
        sa.Column("low_30d", sa.Float(), nullable=True),
        sa.Column("max_spread", sa.Float(), nullable=True),
        sa.Column("outlier_platforms", postgresql.ARRAY(sa.String(length=64)), nullable=True),
        sa.Column("aggregated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("probability IS NULL OR (probability >= 0 AND probability <= 1)", name="ck_events_probability_range"),
    )
    op.create_unique_constraint("events_slug_key", "events", ["slug"])
    op.create_index("ix_events_category", "events", ["category"], unique=False)
    op.create_index("ix_events_resolution_status", "events", ["resolution_status"], unique=False)
    op.create_index("ix_events_is_active", "events", ["is_active"], unique=False)
    op.create_index("ix_events_parent_event_id", "events", ["parent_event_id"], unique=False)
    op.create_index(
        "ix_events_active_status_parent",
        "events",
        ["is_active", "resolution_status", "parent_event_id"],
        unique=False,
    )
    op.execute(
        "CREATE INDEX ix_events_embedding_hnsw ON events USING hnsw (embedding vector_cosine_ops)"
    )

    op.create_table(
        "source_contracts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("platform_contract_id", sa.String(length=255), nullable=False),
        sa.Column("contract_title", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("volume_24h", sa.Float(), nullable=True),
        sa.Column("volume_total", sa.Float(), nullable=True),
        sa.Column("liquidity", sa.Float(), nullable=True),
        sa.Column("num_traders", sa.Integer(), nullable=True),
        sa.Column("last_trade_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("event_id", sa.String(length=255), sa.ForeignKey("events.id"), nullable=True),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("match_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_source_contracts_platform", "source_contracts", ["platform"], unique=False)
    op.create_index("ix_source_contracts_is_active", "source_contracts", ["is_active"], unique=False)
    op.create_index("ix_source_contracts_event_id", "source_contracts", ["event_id"], unique=False)
    op.create_index(
        "uq_source_contracts_active_platform_contract",
        "source_contracts",
        ["platform", "platform_contract_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_source_contracts_unmapped_backlog",
        "source_contracts",
        ["is_active", "event_id", "match_checked_at"],
        unique=False,
    )

    op.create_table(
        "probability_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("probability", sa.Float(), nullable=False),
        sa.Column("volume", sa.Float(), nullable=True),
        sa.Column("liquidity", sa.Float(), nullable=True),
        sa.Column("num_traders", sa.Integer(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_probability_snapshots_event_id", "probability_snapshots", ["event_id"], unique=False)
    op.create_index("ix_probability_snapshots_source", "probability_snapshots", ["source"], unique=False)
    op.create_index("ix_probability_snapshots_captured_at", "probability_snapshots", ["captured_at"], unique=False)
    op.create_index(
        "ix_probability_snapshots_event_source_captured_desc",
        "probability_snapshots",
        ["event_id", "source", sa.text("captured_at DESC")],
        unique=False,
    )

    op.create_table(
        "divergence_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("platform_a", sa.String(length=32), nullable=False),
        sa.Column("platform_b", sa.String(length=32), nullable=False),
        sa.Column("price_a", sa.Float(), nullable=False),
        sa.Column("price_b", sa.Float(), nullable=False),
        sa.Column("spread", sa.Float(), nullable=False),
        sa.Column("higher_platform", sa.String(length=32), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_divergence_snapshots_event_id", "divergence_snapshots", ["event_id"], unique=False)
    op.create_index("ix_divergence_snapshots_captured_at", "divergence_snapshots", ["captured_at"], unique=False)
    op.create_index(
        "ix_divergence_snapshots_event_captured_desc",
        "divergence_snapshots",
        ["event_id", sa.text("captured_at DESC")],
        unique=False,
    )

    op.create_table(
        "event_source_mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=255), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("platform_contract_id", sa.String(length=255), nullable=False),
        sa.Column("confidence", sa.String(length=40), nullable=False),
        sa.Column("mapped_by", sa.String(length=120), nullable=False),
        sa.Column("mapped_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_unique_constraint(
        "uq_event_source_mappings_platform_contract",
        "event_source_mappings",
        ["platform", "platform_contract_id"],
    )
    op.create_index("ix_event_source_mappings_event_id", "event_source_mappings", ["event_id"], unique=False)

    op.create_table(
        "cycle_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("run_id", sa.String(length=80), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("trigger", sa.String(length=32), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("budget_ms", sa.Integer(), nullable=True),
        sa.Column("stats", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("degraded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_cycle_runs_run_id", "cycle_runs", ["run_id"], unique=True)
    op.create_index("ix_cycle_runs_kind", "cycle_runs", ["kind"], unique=False)
    op.create_index("ix_cycle_runs_started_at", "cycle_runs", ["started_at"], unique=False)
    op.create_index(
        "ix_cycle_runs_kind_started_at_desc",
        "cycle_runs",
        ["kind", sa.text("started_at DESC")],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("cycle_runs")
    op.drop_table("event_source_mappings")
    op.drop_table("divergence_snapshots")
    op.drop_table("probability_snapshots")
    op.drop_table("source_contracts")
    op.execute("DROP INDEX IF EXISTS ix_events_embedding_hnsw")
    op.drop_table("events")
