"""Tile records shared by the loaders, the stores and the ring managers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    import numpy as np

    from context.features import ContextFeatures


@dataclass(frozen=True)
class MercatorPosition:
    """Observer position in Web Mercator metres."""

    x: float
    y: float


@dataclass(frozen=True)
class TileCoordinate:
    """Integer tile-grid indices at a zoom level."""

    zoom: int
    col: int
    row: int

    @property
    def key(self) -> str:
        """Canonical ``zoom:col:row`` key."""
        return f'{self.zoom}:{self.col}:{self.row}'

    def __str__(self) -> str:
        return f'{self.zoom}/{self.col}/{self.row}'


@dataclass(frozen=True)
class GeographicBounds:
    """Axis-aligned rectangle in Web Mercator metres."""

    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


@dataclass
class ElevationTile:
    """Raster tile: square grid of elevation samples in metres, ``data[row][col]``."""

    coordinate: TileCoordinate
    bounds: GeographicBounds
    data: np.ndarray
    tile_size: int

    @property
    def zoom(self) -> int:
        return self.coordinate.zoom

    @property
    def key(self) -> str:
        return self.coordinate.key


@dataclass
class ContextTile:
    """Vector tile: classified map features inside the tile bounds."""

    coordinate: TileCoordinate
    bounds: GeographicBounds
    features: ContextFeatures

    @property
    def zoom(self) -> int:
        return self.coordinate.zoom

    @property
    def key(self) -> str:
        return self.coordinate.key


DataTile = Union[ElevationTile, ContextTile]


@dataclass(frozen=True)
class TileAdded:
    """A tile finished loading and entered the in-memory ring cache."""

    key: str
    tile: DataTile = field(repr=False)


@dataclass(frozen=True)
class TileRemoved:
    """A tile left the desired ring and was evicted from the in-memory cache."""

    key: str


TileEvent = Union[TileAdded, TileRemoved]
