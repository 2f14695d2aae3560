"""Embedding and language-model service clients."""

from app.adapters.ai.anthropic_client import AnthropicClient
from app.adapters.ai.base import (
    CompletionService,
    EmbeddingService,
    LlmCompletion,
    VerificationService,
)
from app.adapters.ai.voyage_client import VoyageEmbeddingClient

__all__ = [
    "AnthropicClient",
    "CompletionService",
    "EmbeddingService",
    "LlmCompletion",
    "VerificationService",
    "VoyageEmbeddingClient",
]
