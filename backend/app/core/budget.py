"""Wall-clock budget for scheduled, time-boxed runs."""

from __future__ import annotations

import math
import time
from typing import Callable


class RunDeadline:
    """Monotonic deadline shared by every unit of a budgeted run.

    ``budget_ms=None`` means unbounded.  Units check :attr:`expired`
    before starting, and backoff sleeps check :meth:`allows` so a retry
    never overruns the caller's hard timeout.
    """

    def __init__(
        self,
        budget_ms: int | float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.started_at = clock()
        self.budget_ms = budget_ms
        if budget_ms is None:
            self._ends_at = math.inf
        else:
            self._ends_at = self.started_at + max(0.0, float(budget_ms)) / 1000.0

    @classmethod
    def unbounded(cls) -> "RunDeadline":
        return cls(None)

    def remaining_seconds(self) -> float:
        return max(0.0, self._ends_at - self._clock())

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.started_at) * 1000)

    @property
    def expired(self) -> bool:
        return self._clock() >= self._ends_at

    def allows(self, seconds: float) -> bool:
        return self._clock() + seconds < self._ends_at

    def slice(self, share: float) -> "RunDeadline":
        """Sub-deadline covering ``share`` of what remains, never past this one."""
        if math.isinf(self._ends_at):
            return RunDeadline(None, clock=self._clock)
        remaining_ms = self.remaining_seconds() * 1000.0
        return RunDeadline(remaining_ms * max(0.0, min(1.0, share)), clock=self._clock)
