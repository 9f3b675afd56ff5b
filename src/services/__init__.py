"""Services package - tile service composition."""

from services.tile_service import TileService

__all__ = ['TileService']
