"""Anthropic Messages API client: strict match verification and free-form completions."""

from __future__ import annotations

import logging
import re

from app.adapters.ai.base import LlmCompletion
from app.adapters.ai.http_backoff import post_json_with_backoff
from app.adapters.errors import UpstreamServiceError
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

SERVICE = "ANTHROPIC"

_VERDICT_RE = re.compile(r"""^[\s"'*]*(yes|no)\b""", re.IGNORECASE)

VERIFICATION_PROMPT = """You compare two prediction market questions.

Question A: "{contract_title}"
Question B: "{event_title}"

Do A and B resolve on the SAME real-world outcome? Being about the same topic is not enough: \
a different threshold, price band, date, deadline, country or person means a different outcome.

Answer with exactly one word: YES or NO."""


def parse_verdict(text: str) -> bool:
    """Map a model reply onto a boolean; anything but a clear YES/NO is an error."""
    match = _VERDICT_RE.match(text)
    if match is not None:
        return match.group(1).upper() == "YES"
    raise UpstreamServiceError(SERVICE, f"unparseable verdict: {text[:40]!r}")


class AnthropicClient:
    """Thin async wrapper over ``POST /messages``.

    A missing ``anthropic_api_key`` fails at call time, not at import.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self.model: str = self._settings.verification_model
        self._url = f"{self._settings.anthropic_base_url.rstrip('/')}/messages"

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float = 0.0,
        deadline: RunDeadline | None = None,
    ) -> LlmCompletion:
        if not self._settings.anthropic_api_key:
            raise UpstreamServiceError(SERVICE, "ANTHROPIC_API_KEY not set")

        payload = await post_json_with_backoff(
            service=SERVICE,
            url=self._url,
            headers={
                "x-api-key": self._settings.anthropic_api_key,
                "anthropic-version": self._settings.anthropic_version,
                "content-type": "application/json",
            },
            payload={
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=self._settings.llm_timeout_seconds,
            deadline=deadline,
            settings=self._settings,
        )

        blocks = payload.get("content") or []
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        truncated = payload.get("stop_reason") == "max_tokens"
        if truncated:
            logger.warning("LLM response truncated", extra={"model": model, "max_tokens": max_tokens})
        return LlmCompletion(text=text, truncated=truncated)

    async def verify_same_question(
        self,
        contract_title: str,
        event_title: str,
        *,
        deadline: RunDeadline | None = None,
    ) -> bool:
        completion = await self.complete(
            VERIFICATION_PROMPT.format(contract_title=contract_title, event_title=event_title),
            model=self.model,
            max_tokens=self._settings.verification_max_tokens,
            temperature=0.0,
            deadline=deadline,
        )
        return parse_verdict(completion.text)
