"""Elevation module - Terrarium raster tiles."""

from .fetcher import ElevationTileFetcher, decode_terrarium, encode_terrarium

__all__ = [
    'ElevationTileFetcher',
    'decode_terrarium',
    'encode_terrarium',
]
