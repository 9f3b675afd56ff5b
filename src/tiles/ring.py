"""Keeps the square ring of tiles around the observer loaded in memory.

Every time the observer crosses into a new tile the manager recomputes the
desired ring and reconciles it with what it holds:

* tiles that left the ring are evicted (``TileRemoved``);
* queued loads for keys that left the ring are dropped, running ones are
  left to finish and their results discarded;
* keys that entered the ring are submitted to the load scheduler.

Loads finish asynchronously, possibly after the observer has moved on, so a
result is only accepted if its key is still pending, still desired and not
already held (``TileAdded``).
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING, Generic, TypeVar

from domain.models import TileAdded, TileRemoved
from geo.tiles import ring_coordinates, to_tile_coordinate

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from domain.models import MercatorPosition, TileCoordinate, TileEvent
    from geo.observer import ObserverFeed
    from tiles.scheduler import LoadScheduler

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TileRingManager(Generic[T]):
    """In-memory ring cache for one data kind.

    Usage:
        manager = TileRingManager(scheduler, zoom=15, ring_radius=1, name='elevation')
        manager.subscribe(on_tile_event)
        manager.attach(feed)
        manager.start(initial_position)
    """

    def __init__(
        self,
        scheduler: LoadScheduler[T],
        *,
        zoom: int,
        ring_radius: int,
        name: str = 'tiles',
    ) -> None:
        if ring_radius < 0:
            msg = f'ring_radius must be >= 0, got {ring_radius}'
            raise ValueError(msg)
        self.scheduler = scheduler
        self.zoom = zoom
        self.ring_radius = ring_radius
        self.name = name

        self._tiles: dict[str, T] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._desired: set[str] = set()
        self._center: TileCoordinate | None = None
        self._listeners: list[Callable[[TileEvent], None]] = []
        self._feed: ObserverFeed | None = None
        self._disposed = False

    # --- state

    @property
    def center(self) -> TileCoordinate | None:
        return self._center

    @property
    def tiles(self) -> Mapping[str, T]:
        return self._tiles

    @property
    def pending_keys(self) -> frozenset[str]:
        return frozenset(self._pending)

    def ring_keys(self) -> list[str]:
        """Keys of the current desired ring, row-major."""
        if self._center is None:
            return []
        return [c.key for c in ring_coordinates(self._center, self.ring_radius)]

    def get_tile(self, key: str) -> T | None:
        return self._tiles.get(key)

    def all_tiles(self) -> list[T]:
        return list(self._tiles.values())

    # --- events

    def subscribe(self, listener: Callable[[TileEvent], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[TileEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: TileEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception('[%s] tile listener failed on %s', self.name, event)

    # --- observer

    def attach(self, feed: ObserverFeed) -> None:
        if self._feed is not None:
            self._feed.unsubscribe(self.on_observer_moved)
        self._feed = feed
        feed.subscribe(self.on_observer_moved)

    def start(self, initial_position: MercatorPosition) -> None:
        logger.info(
            '[%s] starting ring manager (zoom %d, radius %d)',
            self.name,
            self.zoom,
            self.ring_radius,
        )
        self._center = None
        self.on_observer_moved(initial_position)

    def on_observer_moved(self, position: MercatorPosition) -> None:
        if self._disposed:
            return
        center = to_tile_coordinate(position, self.zoom)
        if center == self._center:
            return
        self._center = center
        self._reconcile(center)

    def _reconcile(self, center: TileCoordinate) -> None:
        desired = {c.key: c for c in ring_coordinates(center, self.ring_radius)}
        self._desired = set(desired)

        for key in [k for k in self._tiles if k not in desired]:
            del self._tiles[key]
            self._emit(TileRemoved(key=key))

        for key in [k for k in self._pending if k not in desired]:
            del self._pending[key]
            self.scheduler.drop_queued(key)

        requested = 0
        for key, coordinate in desired.items():
            if key in self._tiles or key in self._pending:
                continue
            future = self.scheduler.submit(key, coordinate)
            self._pending[key] = future
            future.add_done_callback(partial(self._on_loaded, key))
            requested += 1

        logger.debug(
            '[%s] ring at %s: %d held, %d pending, %d requested',
            self.name,
            center,
            len(self._tiles),
            len(self._pending),
            requested,
        )

    def _on_loaded(self, key: str, future: asyncio.Future) -> None:
        if self._pending.get(key) is not future:
            return
        del self._pending[key]
        if future.cancelled():
            return
        tile = future.result()
        if tile is None or key not in self._desired or key in self._tiles:
            return
        self._tiles[key] = tile
        self._emit(TileAdded(key=key, tile=tile))

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._feed is not None:
            self._feed.unsubscribe(self.on_observer_moved)
            self._feed = None
        self._pending.clear()
        self.scheduler.dispose()
        self._tiles.clear()
        self._desired.clear()
        self._listeners.clear()
        self._center = None
        logger.info('[%s] ring manager disposed', self.name)
