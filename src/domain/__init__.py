"""Domain layer - tile records and settings."""
from domain.models import (
    ContextTile,
    DataTile,
    ElevationTile,
    GeographicBounds,
    MercatorPosition,
    TileAdded,
    TileCoordinate,
    TileEvent,
    TileRemoved,
)
from domain.settings import (
    CacheSettings,
    ContextSettings,
    ElevationSettings,
    LayerSettings,
    ObserverSettings,
    SimulatorSettings,
)

__all__ = [
    'CacheSettings',
    'ContextSettings',
    'ContextTile',
    'DataTile',
    'ElevationSettings',
    'ElevationTile',
    'GeographicBounds',
    'LayerSettings',
    'MercatorPosition',
    'ObserverSettings',
    'SimulatorSettings',
    'TileAdded',
    'TileCoordinate',
    'TileEvent',
    'TileRemoved',
]
