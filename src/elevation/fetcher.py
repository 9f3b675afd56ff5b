"""Terrarium elevation tiles: one HTTP GET per tile, PNG decoded to metres.

Terrarium encodes elevation in the RGB channels as::

    elevation = R * 256 + G + B / 256 - 32768

The decode is exact: the integer numerator ``R*65536 + G*256 + B`` fits in
24 bits, so dividing by 256 loses nothing even in float32.
"""

from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import TYPE_CHECKING

import aiohttp
import numpy as np
from PIL import Image, UnidentifiedImageError

from domain.models import ElevationTile
from geo.tiles import tile_bounds
from infrastructure.http.client import release_response
from shared.constants import (
    ELEVATION_TILE_SIZE,
    ELEVATION_TILE_URL,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    HTTP_TOO_MANY_REQUESTS,
    TERRARIUM_OFFSET_M,
)
from shared.errors import RateLimitedError, TileDecodeError, TileFetchError

if TYPE_CHECKING:
    from domain.models import TileCoordinate

logger = logging.getLogger(__name__)


def decode_terrarium(img: Image.Image) -> np.ndarray:
    """Decode a Terrarium RGB image into a float32 ``[row, col]`` elevation grid."""
    arr = np.asarray(img.convert('RGB'), dtype=np.int32)
    r = arr[:, :, 0]
    g = arr[:, :, 1]
    b = arr[:, :, 2]
    numerator = r * 65536 + g * 256 + b
    elevation = numerator.astype(np.float64) / 256.0 - TERRARIUM_OFFSET_M
    return elevation.astype(np.float32)


def encode_terrarium(elevation: np.ndarray) -> Image.Image:
    """Inverse of ``decode_terrarium`` for values on the 1/256 m grid."""
    scaled = np.rint((np.asarray(elevation, dtype=np.float64) + TERRARIUM_OFFSET_M) * 256.0)
    scaled = np.clip(scaled, 0, 0xFFFFFF).astype(np.int64)
    rgb = np.stack(
        [(scaled >> 16) & 0xFF, (scaled >> 8) & 0xFF, scaled & 0xFF],
        axis=-1,
    ).astype(np.uint8)
    return Image.fromarray(rgb)


class ElevationTileFetcher:
    """Fetches and decodes one Terrarium tile per call.

    A single attempt is made; retries belong to the caller.

    Usage:
        fetcher = ElevationTileFetcher(session)
        tile = await fetcher.fetch(TileCoordinate(15, 16598, 11273))
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        url_template: str = ELEVATION_TILE_URL,
        timeout_s: float = HTTP_TIMEOUT_DEFAULT,
        tile_size: int = ELEVATION_TILE_SIZE,
    ) -> None:
        self.session = session
        self.url_template = url_template
        self.timeout_s = timeout_s
        self.tile_size = tile_size

    def tile_url(self, coordinate: TileCoordinate) -> str:
        return self.url_template.format(
            zoom=coordinate.zoom,
            col=coordinate.col,
            row=coordinate.row,
        )

    async def fetch(self, coordinate: TileCoordinate) -> ElevationTile:
        """Download and decode one tile.

        Raises:
            RateLimitedError: HTTP 429.
            TileFetchError: transport failure or other non-200 status.
            TileDecodeError: body is not a valid tile image.
        """
        url = self.tile_url(coordinate)
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            resp = await self.session.get(url, timeout=timeout)
            try:
                sc = resp.status
                if sc == HTTP_TOO_MANY_REQUESTS:
                    msg = f'Elevation endpoint rate limited (429) for {coordinate}'
                    raise RateLimitedError(msg, coordinate=coordinate, status=sc)
                if sc != HTTP_OK:
                    msg = f'HTTP {sc} for elevation tile {coordinate}'
                    raise TileFetchError(msg, coordinate=coordinate, status=sc)
                data = await resp.read()
            finally:
                release_response(resp)
        except TileFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f'Failed to fetch elevation tile {coordinate}: {e!r}'
            raise TileFetchError(msg, coordinate=coordinate) from e

        logger.debug('Fetched elevation tile %s (%d bytes)', coordinate, len(data))
        return self.decode(coordinate, data)

    def decode(self, coordinate: TileCoordinate, data: bytes) -> ElevationTile:
        try:
            img = Image.open(BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            msg = f'Undecodable elevation image for {coordinate}'
            raise TileDecodeError(msg, coordinate=coordinate) from e

        if img.size != (self.tile_size, self.tile_size):
            w, h = img.size
            msg = (
                f'Invalid tile dimensions for {coordinate}: expected '
                f'{self.tile_size}x{self.tile_size}, got {w}x{h}'
            )
            raise TileDecodeError(msg, coordinate=coordinate)

        return ElevationTile(
            coordinate=coordinate,
            bounds=tile_bounds(coordinate),
            data=decode_terrarium(img),
            tile_size=self.tile_size,
        )
