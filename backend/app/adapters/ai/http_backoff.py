"""POST helper with budget-aware exponential backoff on rate limiting."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from app.adapters.errors import RateLimitedError, UpstreamServiceError
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# 529 is Anthropic's "overloaded"; treated like 429.
RATE_LIMIT_STATUSES = {429, 529}


def _parse_retry_after(headers: httpx.Headers) -> float | None:
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


def backoff_seconds(attempt: int, *, base: float, cap: float, retry_after: float | None = None) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    delay = min(cap, base * (2 ** (attempt - 1)))
    if retry_after is not None:
        delay = max(delay, retry_after)
    return delay


async def post_json_with_backoff(
    *,
    service: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout: float,
    deadline: RunDeadline | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    attempts = max(0, settings.upstream_retry_attempts) + 1
    backoff_base = max(0.1, settings.upstream_retry_backoff_seconds)
    backoff_cap = max(backoff_base, settings.upstream_retry_backoff_max_seconds)

    for attempt in range(1, attempts + 1):
        request_timeout = timeout
        if deadline is not None:
            if deadline.expired:
                raise UpstreamServiceError(service, "run budget exhausted before request")
            request_timeout = min(timeout, deadline.remaining_seconds())
        try:
            async with httpx.AsyncClient(timeout=request_timeout) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.TimeoutException as exc:
            logger.warning(
                "Upstream request timed out", extra={"service": service, "timeout": request_timeout}
            )
            raise UpstreamServiceError(service, f"Timeout after {request_timeout:.1f}s") from exc
        except httpx.HTTPError as exc:
            logger.warning("Upstream request failed", extra={"service": service, "error": str(exc)})
            raise UpstreamServiceError(service, str(exc)) from exc

        if response.status_code in RATE_LIMIT_STATUSES:
            retry_after = _parse_retry_after(response.headers)
            if attempt >= attempts:
                raise RateLimitedError(
                    service, f"rate limited after {attempts} attempts", retry_after=retry_after
                )
            sleep_seconds = backoff_seconds(
                attempt, base=backoff_base, cap=backoff_cap, retry_after=retry_after
            )
            if deadline is not None and not deadline.allows(sleep_seconds):
                raise RateLimitedError(
                    service, "backoff would exceed remaining run budget", retry_after=retry_after
                )
            logger.warning(
                "Upstream rate limited; backing off",
                extra={
                    "service": service,
                    "attempt": attempt,
                    "attempts_total": attempts,
                    "sleep_seconds": sleep_seconds,
                },
            )
            await asyncio.sleep(sleep_seconds)
            continue

        if response.status_code != 200:
            body_snippet = response.text[:200]
            logger.warning(
                "Upstream non-200 response",
                extra={"service": service, "status": response.status_code, "body_snippet": body_snippet},
            )
            raise UpstreamServiceError(service, f"HTTP {response.status_code}: {body_snippet}")

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamServiceError(service, "response body is not valid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamServiceError(service, f"unexpected payload type {type(data).__name__}")
        return data

    raise RateLimitedError(service, f"rate limited after {attempts} attempts")
