"""Exponential backoff for re-establishing the Mattermost event stream."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, TypeVar

from tweetbridge.errors import ReconnectExhausted, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Delay schedule (seconds): 0.5, 0.75, 1.125, ... capped at 60, ±50% jitter
_INITIAL_INTERVAL = 0.5
_MULTIPLIER = 1.5
_MAX_INTERVAL = 60.0
_RANDOMIZATION = 0.5


@dataclass
class Backoff:
    """Exponential delay schedule with bounded growth.

    ``max_elapsed`` caps the total time spent retrying; ``0`` retries forever.
    """

    initial: float = _INITIAL_INTERVAL
    multiplier: float = _MULTIPLIER
    max_interval: float = _MAX_INTERVAL
    randomization: float = _RANDOMIZATION
    max_elapsed: float = 900.0

    def delays(self) -> Iterator[float]:
        interval = self.initial
        while True:
            spread = interval * self.randomization
            yield random.uniform(interval - spread, interval + spread)
            interval = min(interval * self.multiplier, self.max_interval)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    backoff: Backoff,
    *,
    stop_event: asyncio.Event | None = None,
    on_retry: Callable[[BaseException, int, float], Awaitable[None]] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> T | None:
    """Call ``fn`` until it succeeds, sleeping between TransportError failures.

    Returns ``fn``'s result, or ``None`` if ``stop_event`` was set while
    waiting. Raises ReconnectExhausted once ``backoff.max_elapsed`` has passed.
    Any exception other than TransportError propagates immediately.
    """
    started = clock()
    delays = backoff.delays()
    attempt = 0

    while True:
        if stop_event is not None and stop_event.is_set():
            return None
        attempt += 1
        try:
            return await fn()
        except TransportError as e:
            elapsed = clock() - started
            if backoff.max_elapsed and elapsed >= backoff.max_elapsed:
                raise ReconnectExhausted(
                    f"gave up after {attempt} attempts ({elapsed:.0f}s): {e}"
                ) from e
            delay = next(delays)
            if on_retry:
                await on_retry(e, attempt, delay)
            else:
                logger.warning("Attempt %d failed (%s), retrying in %.1fs", attempt, e, delay)

        if stop_event is None:
            await asyncio.sleep(delay)
            continue
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
            return None
        except asyncio.TimeoutError:
            pass
