"""Shared constants, errors and the clock abstraction."""
from shared.clock import Clock, SystemClock
from shared.errors import (
    RateLimitedError,
    TileDecodeError,
    TileFetchError,
    TileKeyError,
)

__all__ = [
    'Clock',
    'RateLimitedError',
    'SystemClock',
    'TileDecodeError',
    'TileFetchError',
    'TileKeyError',
]
