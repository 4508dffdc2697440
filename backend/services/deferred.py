"""
Deferred checks: "wait N seconds, then act unless someone already did".

schedule(key, delay, check) records when the check was scheduled and
starts a sleeping task. resolve(key) stamps the time the key was settled
by a real event (e.g. a gateway callback). When the task wakes, the check
runs only if the key was NOT resolved at or after its scheduling time.
Nothing is cancelled on resolve; the late timer simply finds it has
nothing to do.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class DeferredChecks:
    def __init__(self, clock: Callable[[], int] = time.monotonic_ns):
        self._clock = clock
        self._scheduled_at: dict[Hashable, int] = {}
        self._resolved_at: dict[Hashable, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self.fired_count = 0
        self.skipped_count = 0

    def schedule(self, key: Hashable, delay: float, check: Callable[[], Awaitable[None]]) -> asyncio.Task:
        scheduled_at = self._clock()
        self._scheduled_at[key] = scheduled_at
        task = asyncio.create_task(self._fire_later(key, scheduled_at, delay, check))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def resolve(self, key: Hashable) -> None:
        # Keys with no pending check have nothing to suppress
        if key in self._scheduled_at:
            self._resolved_at[key] = self._clock()

    def is_resolved_since(self, key: Hashable, scheduled_at: int) -> bool:
        resolved_at = self._resolved_at.get(key)
        return resolved_at is not None and resolved_at >= scheduled_at

    async def _fire_later(self, key, scheduled_at: int, delay: float, check) -> None:
        await asyncio.sleep(delay)

        if self.is_resolved_since(key, scheduled_at):
            self.skipped_count += 1
            if self._scheduled_at.get(key) == scheduled_at:
                self._scheduled_at.pop(key, None)
                self._resolved_at.pop(key, None)
            logger.debug(f"Deferred check {key!r} skipped; resolved before firing")
            return

        # A newer schedule for the same key supersedes this one
        if self._scheduled_at.get(key) != scheduled_at:
            self.skipped_count += 1
            return

        self.fired_count += 1
        try:
            await check()
        except Exception as e:
            logger.error(f"Deferred check {key!r} failed: {e}")
        finally:
            self._scheduled_at.pop(key, None)
            self._resolved_at.pop(key, None)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def close(self) -> None:
        """Cancel outstanding timers (app shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
