"""Exception hierarchy for tile loading.

Fetch errors are expected in normal operation and are absorbed by the retry
controller. ``TileKeyError`` signals a broken internal invariant and is
allowed to propagate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from domain.models import TileCoordinate


class TileKeyError(ValueError):
    """Tile key does not have the ``zoom:col:row`` integer form."""


class TileFetchError(RuntimeError):
    """A tile could not be fetched (transport error or non-success response)."""

    def __init__(
        self,
        message: str,
        *,
        coordinate: TileCoordinate | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.coordinate = coordinate
        self.status = status


class RateLimitedError(TileFetchError):
    """The remote endpoint answered with HTTP 429."""


class TileDecodeError(TileFetchError):
    """The response body could not be decoded into a tile."""
