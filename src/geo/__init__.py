"""Geo module - Web Mercator tile grid and observer positions."""

from .observer import ObserverFeed
from .tiles import (
    latlng_to_mercator,
    mercator_to_latlng,
    parse_tile_key,
    ring_coordinates,
    tile_bounds,
    tile_key,
    to_tile_coordinate,
)

__all__ = [
    'ObserverFeed',
    'latlng_to_mercator',
    'mercator_to_latlng',
    'parse_tile_key',
    'ring_coordinates',
    'tile_bounds',
    'tile_key',
    'to_tile_coordinate',
]
