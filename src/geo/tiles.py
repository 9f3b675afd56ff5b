"""Web Mercator tile grid: positions to tile indices and back.

All functions are pure. Tile edges are produced by a single function per
axis so neighbouring tiles share bit-identical boundaries.
"""

from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import TYPE_CHECKING

from pyproj import Transformer

from domain.models import GeographicBounds, TileCoordinate
from shared.constants import (
    MAX_ZOOM,
    MERCATOR_MAX_EXTENT_M,
    WEB_MERCATOR_CODE,
    WGS84_CODE,
)
from shared.errors import TileKeyError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from domain.models import MercatorPosition

_KEY_SEGMENT = re.compile(r'-?\d+')


def _grid_size(zoom: int) -> int:
    if not (0 <= zoom <= MAX_ZOOM):
        msg = f'zoom {zoom} outside [0, {MAX_ZOOM}]'
        raise ValueError(msg)
    return 1 << zoom


def _x_edge(index: int, n: int) -> float:
    """Western edge of column ``index`` (eastern edge of ``index - 1``)."""
    return index / n * (2 * MERCATOR_MAX_EXTENT_M) - MERCATOR_MAX_EXTENT_M


def _y_edge(index: int, n: int) -> float:
    """Northern edge of row ``index`` (southern edge of ``index - 1``)."""
    return MERCATOR_MAX_EXTENT_M - index / n * (2 * MERCATOR_MAX_EXTENT_M)


def to_tile_coordinate(position: MercatorPosition, zoom: int) -> TileCoordinate:
    """Tile containing a Mercator position; rows grow southwards from the top."""
    n = _grid_size(zoom)
    extent = 2 * MERCATOR_MAX_EXTENT_M
    norm_x = (position.x + MERCATOR_MAX_EXTENT_M) / extent * n
    norm_y = (MERCATOR_MAX_EXTENT_M - position.y) / extent * n
    # Positions on (or beyond) the world edge belong to the outermost tile
    col = min(max(math.floor(norm_x), 0), n - 1)
    row = min(max(math.floor(norm_y), 0), n - 1)
    return TileCoordinate(zoom=zoom, col=col, row=row)


def tile_bounds(coordinate: TileCoordinate) -> GeographicBounds:
    """Mercator rectangle covered by one tile."""
    n = _grid_size(coordinate.zoom)
    return GeographicBounds(
        min_x=_x_edge(coordinate.col, n),
        max_x=_x_edge(coordinate.col + 1, n),
        min_y=_y_edge(coordinate.row + 1, n),
        max_y=_y_edge(coordinate.row, n),
    )


def tile_key(coordinate: TileCoordinate) -> str:
    return coordinate.key


def parse_tile_key(key: str) -> TileCoordinate:
    """Inverse of ``tile_key``.

    Raises:
        TileKeyError: if the key is not three colon-separated integers.
    """
    parts = key.split(':')
    if len(parts) != 3:
        msg = f'Invalid tile key format: {key!r}. Expected "zoom:col:row".'
        raise TileKeyError(msg)
    if not all(_KEY_SEGMENT.fullmatch(p) for p in parts):
        msg = f'Tile key contains non-integer values: {key!r}'
        raise TileKeyError(msg)
    zoom, col, row = (int(p) for p in parts)
    return TileCoordinate(zoom=zoom, col=col, row=row)


def ring_coordinates(center: TileCoordinate, radius: int) -> Iterator[TileCoordinate]:
    """The (2R+1)^2 square of tiles around ``center``, row-major."""
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            yield TileCoordinate(
                zoom=center.zoom,
                col=center.col + dx,
                row=center.row + dy,
            )


@lru_cache(maxsize=1)
def _mercator_to_wgs84() -> Transformer:
    return Transformer.from_crs(WEB_MERCATOR_CODE, WGS84_CODE, always_xy=True)


@lru_cache(maxsize=1)
def _wgs84_to_mercator() -> Transformer:
    return Transformer.from_crs(WGS84_CODE, WEB_MERCATOR_CODE, always_xy=True)


def mercator_to_latlng(x: float, y: float) -> tuple[float, float]:
    """Web Mercator metres -> (lat, lng) in degrees."""
    lng, lat = _mercator_to_wgs84().transform(x, y)
    return lat, lng


def latlng_to_mercator(lat: float, lng: float) -> tuple[float, float]:
    """(lat, lng) in degrees -> Web Mercator metres (x, y)."""
    x, y = _wgs84_to_mercator().transform(lng, lat)
    return x, y
