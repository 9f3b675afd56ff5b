"""Context module - OpenStreetMap vector features via Overpass."""

from .features import (
    Airport,
    Building,
    ContextFeatures,
    LandUse,
    LineString,
    Point,
    Polygon,
    Railway,
    Road,
    Vegetation,
    Water,
)
from .fetcher import ContextTileFetcher, build_overpass_query
from .parser import parse_osm_elements
from .status import OverpassStatusMonitor, RateSlot, RateStatus, parse_status

__all__ = [
    'Airport',
    'Building',
    'ContextFeatures',
    'ContextTileFetcher',
    'LandUse',
    'LineString',
    'OverpassStatusMonitor',
    'Point',
    'Polygon',
    'Railway',
    'RateSlot',
    'RateStatus',
    'Road',
    'Vegetation',
    'Water',
    'build_overpass_query',
    'parse_osm_elements',
    'parse_status',
]
