"""Overpass context tiles: one POST query per tile, JSON classified into features."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

import aiohttp

from context.parser import parse_osm_elements
from domain.models import ContextTile
from geo.tiles import mercator_to_latlng, tile_bounds
from infrastructure.http.client import release_response
from shared.constants import (
    CONTEXT_QUERY_TIMEOUT_S,
    HTTP_OK,
    HTTP_TOO_MANY_REQUESTS,
    OVERPASS_ENDPOINT,
)
from shared.errors import RateLimitedError, TileDecodeError, TileFetchError

if TYPE_CHECKING:
    from domain.models import GeographicBounds, TileCoordinate

logger = logging.getLogger(__name__)

_QUERY_BODY = """(
  node["building"];
  way["building"];
  relation["building"];
  way["highway"];
  way["railway"];
  way["waterway"];
  node["waterway"];
  way["natural"="water"];
  relation["natural"="water"];
  way["water"~"lake|pond|reservoir"];
  way["natural"="wetland"];
  way["natural"="coastline"];
  way["landuse"="water"];
  relation["landuse"="water"];
  node["aeroway"="aerodrome"];
  way["aeroway"="aerodrome"];
  relation["aeroway"="aerodrome"];
  way["natural"~"forest|wood|scrub|grass|heath"];
  node["natural"~"tree|trees"];
  way["landuse"~"residential|industrial|agricultural|grass|sand|commercial"];
);
out geom;"""


def overpass_bbox(bounds: GeographicBounds) -> tuple[float, float, float, float]:
    """(south, west, north, east) in degrees for a Mercator rectangle."""
    lat_a, lng_a = mercator_to_latlng(bounds.min_x, bounds.min_y)
    lat_b, lng_b = mercator_to_latlng(bounds.max_x, bounds.max_y)
    return min(lat_a, lat_b), min(lng_a, lng_b), max(lat_a, lat_b), max(lng_a, lng_b)


def build_overpass_query(bounds: GeographicBounds, *, timeout_s: float | None = None) -> str:
    """OverpassQL query for every visual feature class inside ``bounds``."""
    south, west, north, east = overpass_bbox(bounds)
    settings = f'[bbox:{south},{west},{north},{east}]'
    if timeout_s is not None:
        settings = f'[out:json][timeout:{max(1, int(timeout_s))}]{settings}'
    return f'{settings};\n{_QUERY_BODY}'


class ContextTileFetcher:
    """Fetches one context tile per call from an Overpass interpreter.

    A single attempt is made; retries and slot waits belong to the caller.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        endpoint: str = OVERPASS_ENDPOINT,
        timeout_s: float = CONTEXT_QUERY_TIMEOUT_S,
    ) -> None:
        self.session = session
        self.endpoint = endpoint
        self.timeout_s = timeout_s

    async def fetch(self, coordinate: TileCoordinate) -> ContextTile:
        """Query, parse and classify one tile.

        Raises:
            RateLimitedError: HTTP 429.
            TileFetchError: transport failure or other non-200 status.
            TileDecodeError: body is not valid Overpass JSON.
        """
        bounds = tile_bounds(coordinate)
        query = build_overpass_query(bounds, timeout_s=self.timeout_s)
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            resp = await self.session.post(
                self.endpoint,
                data={'data': query},
                timeout=timeout,
            )
            try:
                sc = resp.status
                if sc == HTTP_TOO_MANY_REQUESTS:
                    msg = f'Overpass API rate limited (429) for {coordinate}'
                    raise RateLimitedError(msg, coordinate=coordinate, status=sc)
                if sc != HTTP_OK:
                    msg = f'Overpass API error HTTP {sc} for {coordinate}'
                    raise TileFetchError(msg, coordinate=coordinate, status=sc)
                body = await resp.text()
            finally:
                release_response(resp)
        except TileFetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f'Failed to query Overpass for {coordinate}: {e!r}'
            raise TileFetchError(msg, coordinate=coordinate) from e

        try:
            payload = json.loads(body)
        except ValueError as e:
            msg = f'Overpass returned invalid JSON for {coordinate}'
            raise TileDecodeError(msg, coordinate=coordinate) from e
        if not isinstance(payload, dict):
            msg = f'Overpass returned unexpected payload for {coordinate}'
            raise TileDecodeError(msg, coordinate=coordinate)

        features = parse_osm_elements(payload)
        logger.debug('Context tile %s: %d features', coordinate, features.count())
        return ContextTile(coordinate=coordinate, bounds=bounds, features=features)
