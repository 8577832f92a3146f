"""Retry policy shared by the provisioning steps."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from provctl.core.errors import OperatorCancelledError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how far apart a step is attempted.

    `max_attempts=None` retries until success or cancellation. The delay is
    waited before every attempt, `initial_delay` before the first one.
    """

    max_attempts: int | None = None
    delay: float = 1.0
    initial_delay: float = 0.0

    @classmethod
    def unbounded(cls, delay: float = 1.0) -> RetryPolicy:
        return cls(max_attempts=None, delay=delay)

    @classmethod
    def bounded(cls, max_attempts: int, *, initial_delay: float, delay: float) -> RetryPolicy:
        return cls(max_attempts=max_attempts, delay=delay, initial_delay=initial_delay)

    def delay_before(self, attempt: int) -> float:
        return self.initial_delay if attempt == 0 else self.delay

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts


async def wait_or_cancel(cancelled: asyncio.Event, delay: float) -> None:
    """Wait `delay` seconds unless cancelled first; raise OperatorCancelledError if so."""
    if cancelled.is_set():
        raise OperatorCancelledError("Cancelled by operator")
    if delay <= 0:
        await asyncio.sleep(0)
    else:
        try:
            await asyncio.wait_for(cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
    if cancelled.is_set():
        raise OperatorCancelledError("Cancelled by operator")
