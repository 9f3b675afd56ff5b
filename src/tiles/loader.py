"""Loads one tile: persistent store first, then the network with retries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

from shared.clock import SystemClock
from shared.constants import (
    HTTP_RETRIES_DEFAULT,
    RATE_LIMIT_RETRY_DELAY_S,
    RETRY_BASE_DELAY_S,
)
from tiles.retry import load_with_retry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from domain.models import TileCoordinate
    from shared.clock import Clock
    from tiles.store import TileStore

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TileFetcher(Protocol[T]):
    async def fetch(self, coordinate: TileCoordinate) -> T: ...


class TileLoader(Generic[T]):
    """Composes store lookup, retrying fetch and store population.

    Usage:
        loader = TileLoader(ElevationTileFetcher(session), store=store)
        tile = await loader.load(TileCoordinate(15, 16598, 11273))
    """

    def __init__(
        self,
        fetcher: TileFetcher[T],
        *,
        store: TileStore[T] | None = None,
        max_retries: int = HTTP_RETRIES_DEFAULT,
        clock: Clock | None = None,
        base_delay_s: float = RETRY_BASE_DELAY_S,
        rate_limit_delay_s: float = RATE_LIMIT_RETRY_DELAY_S,
        before_attempt: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.max_retries = max_retries
        self.clock = clock or SystemClock()
        self.base_delay_s = base_delay_s
        self.rate_limit_delay_s = rate_limit_delay_s
        self.before_attempt = before_attempt
        self.stats = {'cache_hits': 0, 'downloads': 0, 'failures': 0}

    async def load(self, coordinate: TileCoordinate) -> T | None:
        key = coordinate.key
        if self.store is not None:
            cached = self.store.get(key)
            if cached is not None:
                self.stats['cache_hits'] += 1
                logger.debug('Store hit for %s', key)
                return cached

        tile = await load_with_retry(
            self.fetcher.fetch,
            coordinate,
            max_retries=self.max_retries,
            clock=self.clock,
            base_delay_s=self.base_delay_s,
            rate_limit_delay_s=self.rate_limit_delay_s,
            before_attempt=self.before_attempt,
        )
        if tile is None:
            self.stats['failures'] += 1
            return None

        self.stats['downloads'] += 1
        if self.store is not None:
            self.store.set(key, tile)
        return tile
