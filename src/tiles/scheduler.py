"""Concurrency-limited load scheduler with a FIFO wait queue.

At most ``max_concurrent_loads`` loads run at once; the rest wait in
submission order. A queued load that does not get a slot within
``queue_timeout_s`` resolves to ``None``. Each key has at most one pending
load: submitting a key that is already pending returns the same future.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from shared.clock import SystemClock
from shared.constants import QUEUE_WAIT_TIMEOUT_S

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from domain.models import TileCoordinate
    from shared.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(eq=False)
class _QueuedLoad:
    key: str
    coordinate: TileCoordinate
    future: asyncio.Future
    timer: asyncio.Task | None = None


class LoadScheduler(Generic[T]):
    def __init__(
        self,
        load: Callable[[TileCoordinate], Awaitable[T | None]],
        *,
        max_concurrent_loads: int,
        queue_timeout_s: float = QUEUE_WAIT_TIMEOUT_S,
        clock: Clock | None = None,
        name: str = 'tiles',
    ) -> None:
        if max_concurrent_loads < 1:
            msg = f'max_concurrent_loads must be >= 1, got {max_concurrent_loads}'
            raise ValueError(msg)
        self._load = load
        self.max_concurrent_loads = max_concurrent_loads
        self.queue_timeout_s = queue_timeout_s
        self.clock = clock or SystemClock()
        self.name = name

        self._pending: dict[str, asyncio.Future] = {}
        self._active: dict[str, asyncio.Task] = {}
        self._queue: deque[_QueuedLoad] = deque()
        self._disposed = False

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def submit(self, key: str, coordinate: TileCoordinate) -> asyncio.Future:
        """Schedule a load of ``coordinate``; the future resolves to the tile or ``None``."""
        existing = self._pending.get(key)
        if existing is not None:
            return existing

        future = asyncio.get_running_loop().create_future()
        if self._disposed:
            future.set_result(None)
            return future

        self._pending[key] = future
        if len(self._active) < self.max_concurrent_loads:
            self._start(key, coordinate, future)
        else:
            entry = _QueuedLoad(key, coordinate, future)
            entry.timer = asyncio.create_task(self._expire(entry))
            self._queue.append(entry)
            logger.debug('[%s] queued %s (%d waiting)', self.name, key, len(self._queue))
        return future

    def drop_queued(self, key: str) -> bool:
        """Remove a load that has not started yet; running loads are left alone."""
        for entry in self._queue:
            if entry.key == key:
                self._queue.remove(entry)
                self._cancel_timer(entry)
                self._resolve(entry.key, entry.future, None)
                return True
        return False

    def dispose(self) -> None:
        """Abort running loads and resolve every outstanding future with ``None``."""
        self._disposed = True
        queued, self._queue = self._queue, deque()
        for entry in queued:
            self._cancel_timer(entry)
        for task in list(self._active.values()):
            task.cancel()
        self._active.clear()
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_result(None)

    def _start(self, key: str, coordinate: TileCoordinate, future: asyncio.Future) -> None:
        self._active[key] = asyncio.create_task(self._run(key, coordinate, future))

    async def _run(self, key: str, coordinate: TileCoordinate, future: asyncio.Future) -> None:
        result = None
        try:
            result = await self._load(coordinate)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('[%s] load of %s failed unexpectedly', self.name, key)
        finally:
            self._finish(key, future, result)

    def _finish(self, key: str, future: asyncio.Future, result: T | None) -> None:
        if self._active.get(key) is asyncio.current_task():
            del self._active[key]
        self._resolve(key, future, result)
        if not self._disposed:
            self._start_next()

    def _start_next(self) -> None:
        # One completion frees one slot
        while self._queue and len(self._active) < self.max_concurrent_loads:
            entry = self._queue.popleft()
            self._cancel_timer(entry)
            if entry.future.done():
                continue
            self._start(entry.key, entry.coordinate, entry.future)
            return

    async def _expire(self, entry: _QueuedLoad) -> None:
        await self.clock.sleep(self.queue_timeout_s)
        if entry not in self._queue:
            return
        self._queue.remove(entry)
        entry.timer = None
        logger.warning(
            '[%s] %s waited %.1fs for a load slot, giving up',
            self.name,
            entry.key,
            self.queue_timeout_s,
        )
        self._resolve(entry.key, entry.future, None)

    def _resolve(self, key: str, future: asyncio.Future, result: T | None) -> None:
        if self._pending.get(key) is future:
            del self._pending[key]
        if not future.done():
            future.set_result(result)

    @staticmethod
    def _cancel_timer(entry: _QueuedLoad) -> None:
        if entry.timer is not None and not entry.timer.done():
            entry.timer.cancel()
        entry.timer = None
