"""Wires the tile core together for one observer.

One persistent store, loader, scheduler and ring manager per data kind; the
context kind additionally shares one Overpass status monitor whose slot wait
runs before every context fetch attempt.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from context.fetcher import ContextTileFetcher
from context.status import OverpassStatusMonitor
from elevation.fetcher import ElevationTileFetcher
from geo.observer import ObserverFeed
from shared.clock import SystemClock
from shared.constants import CONTEXT_STORE_NAMESPACE, ELEVATION_STORE_NAMESPACE
from tiles.loader import TileLoader
from tiles.ring import TileRingManager
from tiles.scheduler import LoadScheduler
from tiles.store import ContextTileCodec, ElevationTileCodec, TileStore

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

    from domain.models import ContextTile, ElevationTile, MercatorPosition, TileEvent
    from domain.settings import LayerSettings, SimulatorSettings
    from shared.clock import Clock

logger = logging.getLogger(__name__)


class TileService:
    """Elevation and context rings that follow a single observer.

    Usage:
        service = TileService(settings, session)
        service.subscribe(on_tile_event)
        await service.start(position)
        service.feed.publish(next_position)
        service.dispose()
    """

    def __init__(
        self,
        settings: SimulatorSettings,
        session: aiohttp.ClientSession,
        *,
        clock: Clock | None = None,
        feed: ObserverFeed | None = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.feed = feed or ObserverFeed()

        cache_dir = Path(settings.cache.directory)
        self.elevation_store: TileStore[ElevationTile] = TileStore(
            ELEVATION_STORE_NAMESPACE,
            ElevationTileCodec(),
            cache_dir=cache_dir,
            ttl_s=settings.cache.ttl_s,
            enabled=settings.cache.enabled,
            clock=self.clock,
        )
        self.context_store: TileStore[ContextTile] = TileStore(
            CONTEXT_STORE_NAMESPACE,
            ContextTileCodec(),
            cache_dir=cache_dir,
            ttl_s=settings.cache.ttl_s,
            enabled=settings.cache.enabled,
            clock=self.clock,
        )

        ctx = settings.context
        self.status_monitor: OverpassStatusMonitor | None = None
        if ctx.status_check_enabled:
            self.status_monitor = OverpassStatusMonitor(
                session,
                status_url=ctx.status_endpoint,
                poll_interval_s=ctx.status_poll_interval_s,
                timeout_s=ctx.status_timeout_s,
                cache_ttl_s=ctx.status_cache_ttl_s,
                fallback_throttle_s=ctx.fallback_throttle_s,
                max_slot_wait_s=ctx.max_slot_wait_s,
                clock=self.clock,
            )

        elev = settings.elevation
        self.elevation_loader: TileLoader[ElevationTile] = self._make_loader(
            ElevationTileFetcher(
                session,
                url_template=elev.tile_url_template,
                timeout_s=elev.request_timeout_s,
            ),
            elev,
            self.elevation_store,
        )
        self.context_loader: TileLoader[ContextTile] = self._make_loader(
            ContextTileFetcher(
                session,
                endpoint=ctx.overpass_endpoint,
                timeout_s=ctx.request_timeout_s,
            ),
            ctx,
            self.context_store,
            before_attempt=self.status_monitor.wait_for_slot if self.status_monitor else None,
        )

        self.elevation = self._make_ring(self.elevation_loader, elev, 'elevation')
        self.context = self._make_ring(self.context_loader, ctx, 'context')

    def _make_loader(self, fetcher, layer: LayerSettings, store, *, before_attempt=None):
        return TileLoader(
            fetcher,
            store=store,
            max_retries=layer.max_retries,
            clock=self.clock,
            base_delay_s=layer.retry_base_delay_s,
            rate_limit_delay_s=layer.rate_limit_delay_s,
            before_attempt=before_attempt,
        )

    def _make_ring(self, loader: TileLoader, layer: LayerSettings, name: str) -> TileRingManager:
        scheduler = LoadScheduler(
            loader.load,
            max_concurrent_loads=layer.max_concurrent_loads,
            queue_timeout_s=layer.queue_timeout_s,
            clock=self.clock,
            name=name,
        )
        manager = TileRingManager(
            scheduler,
            zoom=layer.zoom,
            ring_radius=layer.ring_radius,
            name=name,
        )
        manager.attach(self.feed)
        return manager

    @property
    def managers(self) -> tuple[TileRingManager, TileRingManager]:
        return self.elevation, self.context

    def subscribe(self, listener: Callable[[TileEvent], None]) -> None:
        """Listen to tile events of both kinds."""
        for manager in self.managers:
            manager.subscribe(listener)

    async def start(self, position: MercatorPosition) -> None:
        removed = self.elevation_store.cleanup_expired() + self.context_store.cleanup_expired()
        if removed:
            logger.info('Removed %d expired tiles from the persistent stores', removed)
        if self.status_monitor is not None:
            # Prime the slot knowledge before the first context query
            await self.status_monitor.poll()
        for manager in self.managers:
            manager.start(position)

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            'elevation': dict(self.elevation_loader.stats),
            'context': dict(self.context_loader.stats),
        }

    def dispose(self) -> None:
        for manager in self.managers:
            manager.dispose()
        if self.status_monitor is not None:
            self.status_monitor.dispose()
        self.elevation_store.close()
        self.context_store.close()
        logger.info('Tile service disposed')
