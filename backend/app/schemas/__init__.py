from app.schemas.auto_map import ProposedContractRef, ProposedEvent
from app.schemas.ops import CycleRunOut, RunRequest, RunResponse

__all__ = [
    "ProposedContractRef",
    "ProposedEvent",
    "CycleRunOut",
    "RunRequest",
    "RunResponse",
]
