from app.models.base import Base
from app.models.cycle_run import CycleRun
from app.models.divergence_snapshot import DivergenceSnapshot
from app.models.event import Event
from app.models.event_source_mapping import EventSourceMapping
from app.models.probability_snapshot import ProbabilitySnapshot
from app.models.source_contract import SourceContract

__all__ = [
    "Base",
    "CycleRun",
    "DivergenceSnapshot",
    "Event",
    "EventSourceMapping",
    "ProbabilitySnapshot",
    "SourceContract",
]
