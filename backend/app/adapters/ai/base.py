"""Protocols for the embedding and language-model collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol, Sequence, runtime_checkable

from app.core.budget import RunDeadline

EmbeddingMode = Literal["document", "query"]


@dataclass(frozen=True, slots=True)
class LlmCompletion:
    text: str
    truncated: bool = False


@runtime_checkable
class EmbeddingService(Protocol):
    model: str

    async def embed(
        self,
        texts: Sequence[str],
        mode: EmbeddingMode = "document",
        *,
        deadline: RunDeadline | None = None,
    ) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...


@runtime_checkable
class VerificationService(Protocol):
    model: str

    async def verify_same_question(
        self,
        contract_title: str,
        event_title: str,
        *,
        deadline: RunDeadline | None = None,
    ) -> bool:
        """Strict yes/no: do both titles resolve on the same real-world outcome?"""
        ...


@runtime_checkable
class CompletionService(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float = 0.0,
        deadline: RunDeadline | None = None,
    ) -> LlmCompletion: ...
