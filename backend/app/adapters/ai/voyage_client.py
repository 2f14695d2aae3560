"""Voyage AI embedding client."""

from __future__ import annotations

import logging
from typing import Sequence

from app.adapters.ai.base import EmbeddingMode
from app.adapters.ai.http_backoff import post_json_with_backoff
from app.adapters.errors import UpstreamServiceError
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

SERVICE = "VOYAGE"


class VoyageEmbeddingClient:
    """Generates embeddings through the Voyage ``/embeddings`` endpoint.

    Inputs are chunked to ``embedding_batch_size`` texts per request.
    A missing ``voyage_api_key`` fails at call time, not at import.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self.model: str = self._settings.voyage_model
        self._url = f"{self._settings.voyage_base_url.rstrip('/')}/embeddings"

    async def embed(
        self,
        texts: Sequence[str],
        mode: EmbeddingMode = "document",
        *,
        deadline: RunDeadline | None = None,
    ) -> list[list[float]]:
        if not texts:
            return []
        if not self._settings.voyage_api_key:
            raise UpstreamServiceError(SERVICE, "VOYAGE_API_KEY not set")

        headers = {
            "Authorization": f"Bearer {self._settings.voyage_api_key}",
            "Content-Type": "application/json",
        }
        batch_size = max(1, self._settings.embedding_batch_size)
        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            payload = await post_json_with_backoff(
                service=SERVICE,
                url=self._url,
                headers=headers,
                payload={"model": self.model, "input": batch, "input_type": mode},
                timeout=self._settings.voyage_timeout_seconds,
                deadline=deadline,
                settings=self._settings,
            )
            vectors.extend(_parse_embeddings(payload, expected=len(batch)))

        logger.debug("Voyage embeddings generated", extra={"count": len(vectors), "mode": mode})
        return vectors


def _parse_embeddings(payload: dict, *, expected: int) -> list[list[float]]:
    data = payload.get("data")
    if not isinstance(data, list) or len(data) != expected:
        raise UpstreamServiceError(
            SERVICE,
            f"expected {expected} embeddings, got {len(data) if isinstance(data, list) else 'none'}",
        )
    ordered = sorted(data, key=lambda item: item.get("index", 0))
    try:
        return [[float(v) for v in item["embedding"]] for item in ordered]
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamServiceError(SERVICE, "malformed embedding payload") from exc
