"""Tile acquisition and caching.

This module provides:
- load_with_retry: bounded retry with exponential backoff
- TileStore: SQLite-backed persistent store with per-entry expiry
- TileLoader: store lookup, retrying fetch, store population
- LoadScheduler: concurrency-limited FIFO load queue
- TileRingManager: in-memory ring of tiles around the observer
"""

from tiles.loader import TileLoader
from tiles.retry import load_with_retry
from tiles.ring import TileRingManager
from tiles.scheduler import LoadScheduler
from tiles.store import ContextTileCodec, ElevationTileCodec, TileStore

__all__ = [
    'ContextTileCodec',
    'ElevationTileCodec',
    'LoadScheduler',
    'TileLoader',
    'TileRingManager',
    'TileStore',
    'load_with_retry',
]
