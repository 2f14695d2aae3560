"""Fusion store contract and its PostgreSQL implementation."""

from app.adapters.store.base import (
    ContractRecord,
    DivergenceRow,
    EventDraft,
    EventRecord,
    FusedFields,
    FusionStore,
    MappingRow,
    SimilarEvent,
    SnapshotRow,
)
from app.adapters.store.postgres import PostgresFusionStore

__all__ = [
    "ContractRecord",
    "DivergenceRow",
    "EventDraft",
    "EventRecord",
    "FusedFields",
    "FusionStore",
    "MappingRow",
    "PostgresFusionStore",
    "SimilarEvent",
    "SnapshotRow",
]
