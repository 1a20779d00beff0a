"""Deduplicating work queue with per-key exclusion and backoff."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class WorkQueue:
    """Queue of job keys shared by a pool of asyncio workers.

    A key is never handed to two workers at once: adding a key that is being
    processed marks it dirty and it is queued again once the worker calls
    ``done``. Adding a key that is already waiting is a no-op. All methods
    must be called from the event loop that owns the queue.

    Example:
        ```python
        queue = WorkQueue()
        queue.add("default/mnist")
        key = await queue.get()
        try:
            ...
        finally:
            queue.done(key)
        ```
    """

    def __init__(self, base_delay: float = 0.5, max_delay: float = 300.0) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue a key after a delay; an earlier pending timer for it wins."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending.when() <= when:
                return
            pending.cancel()
        self._timers[key] = loop.call_at(when, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        """Queue a key after an exponential backoff delay.

        Returns:
            The delay applied, in seconds
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of a key after a successful reconcile."""
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Wait for the next key. Returns None once the queue shuts down."""
        key = await self._queue.get()
        if key is None or self._shutting_down:
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        """Mark a key as processed; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self, workers: int) -> None:
        """Stop accepting keys and wake up every worker."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)
