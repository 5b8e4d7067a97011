"""Exponential backoff state and a cancellable delayed-task abstraction."""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from ..types import INITIAL_RECONNECT_S, MAX_RECONNECT_S


class Backoff:
    """Doubling retry delay, capped at ``maximum``.

    ``next_delay()`` returns the delay to wait before the next attempt and
    advances the state; ``reset()`` is called on every successful open.
    """

    MULTIPLIER = 2

    def __init__(
        self,
        initial: float = INITIAL_RECONNECT_S,
        maximum: float = MAX_RECONNECT_S,
    ) -> None:
        if initial <= 0:
            raise ValueError("initial delay must be > 0")
        if maximum < initial:
            raise ValueError("maximum delay must be >= initial delay")
        self.initial = initial
        self.maximum = maximum
        self.current = initial

    def reset(self) -> None:
        self.current = self.initial

    def next_delay(self) -> float:
        delay = min(self.current, self.maximum)
        self.current = min(self.current * self.MULTIPLIER, self.maximum)
        return delay


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback once after a delay; the returned handle cancels it."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop's ``call_later``."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)
