"""Classification of Overpass JSON elements into visual context features."""

from __future__ import annotations

import logging
import re
from typing import Any

from context.features import (
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
from geo.tiles import latlng_to_mercator
from shared.constants import (
    AIRPORT_DEFAULT_NAME,
    BUILDING_LEVEL_HEIGHT_M,
    ROAD_DEFAULT_LANES,
    ROAD_EXCLUDED_TYPES,
    ROAD_LARGE_TYPES,
    ROAD_MEDIUM_TYPES,
    VEGETATION_DEFAULT_HEIGHT_CATEGORY,
    VEGETATION_SMALL_MAX_M,
    VEGETATION_TALL_MIN_M,
    palette_color,
)

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r'-?\d+(?:\.\d+)?')

Coords = list[tuple[float, float]]


def _parse_float(value: str | None) -> float | None:
    """First number in an OSM tag value ('12', '12.5 m', '10;12')."""
    if not value:
        return None
    m = _NUMBER.search(value)
    return float(m.group()) if m else None


def _parse_int(value: str | None) -> int | None:
    number = _parse_float(value)
    return int(number) if number is not None else None


def _is_water(tags: dict[str, str]) -> bool:
    return bool(
        tags.get('waterway')
        or tags.get('natural') in ('water', 'wetland', 'coastline')
        or tags.get('water')
        or tags.get('landuse') == 'water'
    )


def road_width_category(road_type: str) -> str:
    if road_type in ROAD_LARGE_TYPES:
        return 'large'
    if road_type in ROAD_MEDIUM_TYPES:
        return 'medium'
    return 'small'


def vegetation_height_category(veg_type: str, height: float | None) -> str:
    if height is None:
        return VEGETATION_DEFAULT_HEIGHT_CATEGORY.get(veg_type, 'small')
    if height < VEGETATION_SMALL_MAX_M:
        return 'small'
    if height < VEGETATION_TALL_MIN_M:
        return 'medium'
    return 'tall'


def _to_mercator(points: list[dict[str, Any]]) -> Coords:
    coords: Coords = []
    for p in points:
        lat, lon = p.get('lat'), p.get('lon')
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            coords.append(latlng_to_mercator(lat, lon))
    return coords


def _closed_ring(coords: Coords) -> Coords:
    if coords and coords[0] != coords[-1]:
        return [*coords, coords[0]]
    return coords


def _stitch_rings(parts: list[Coords]) -> list[Coords]:
    """Join way segments that share endpoints into closed rings.

    Segments may run in either direction. A chain that cannot be closed is
    closed with a straight edge.
    """
    pending = [list(p) for p in parts if p]
    rings: list[Coords] = []
    while pending:
        ring = pending.pop(0)
        joined = True
        while joined and ring[0] != ring[-1]:
            joined = False
            for i, part in enumerate(pending):
                if part[0] == ring[-1]:
                    ring.extend(part[1:])
                elif part[-1] == ring[-1]:
                    ring.extend(reversed(part[:-1]))
                elif part[-1] == ring[0]:
                    ring[:0] = part[:-1]
                elif part[0] == ring[0]:
                    ring[:0] = reversed(part[1:])
                else:
                    continue
                del pending[i]
                joined = True
                break
        rings.append(_closed_ring(ring))
    return rings


class _Classifier:
    """Accumulates features while walking the element list once."""

    def __init__(self, node_map: dict[int, tuple[float, float]]) -> None:
        self.node_map = node_map
        self.features = ContextFeatures()

    # --- shared feature builders

    def _building(self, fid: str, geometry, tags: dict[str, str]) -> None:
        height = _parse_float(tags.get('height'))
        levels = _parse_int(tags.get('building:levels'))
        if height is None and levels is None:
            return
        if height is None:
            height = levels * BUILDING_LEVEL_HEIGHT_M
        btype = tags.get('building:type') or tags['building']
        self.features.buildings.append(
            Building(
                id=fid,
                geometry=geometry,
                type=btype,
                height=height,
                level_count=levels,
                color=palette_color('buildings', btype),
            )
        )

    def _airport(self, fid: str, geometry, tags: dict[str, str]) -> None:
        atype = tags.get('aeroway', 'aerodrome')
        self.features.airports.append(
            Airport(
                id=fid,
                geometry=geometry,
                type=atype,
                name=tags.get('name') or AIRPORT_DEFAULT_NAME,
                color=palette_color('airports', atype),
            )
        )

    def _vegetation(self, fid: str, geometry, vtype: str, tags: dict[str, str]) -> None:
        height = _parse_float(tags.get('height'))
        self.features.vegetation.append(
            Vegetation(
                id=fid,
                geometry=geometry,
                type=vtype,
                height=height,
                height_category=vegetation_height_category(vtype, height),
                color=palette_color('vegetation', vtype),
            )
        )

    def _land_use(self, fid: str, geometry, tags: dict[str, str]) -> None:
        ltype = tags['landuse']
        self.features.land_use.append(
            LandUse(
                id=fid,
                geometry=geometry,
                type=ltype,
                color=palette_color('land_use', ltype),
            )
        )

    def _water(self, fid: str, geometry, wtype: str, *, is_area: bool) -> None:
        self.features.waters.append(
            Water(
                id=fid,
                geometry=geometry,
                type=wtype,
                is_area=is_area,
                color=palette_color('waters', wtype),
            )
        )

    # --- element kinds

    def way(self, element: dict[str, Any]) -> None:
        tags: dict[str, str] = element.get('tags') or {}
        if not tags:
            return
        geometry = element.get('geometry')
        if isinstance(geometry, list):
            coords = _to_mercator(geometry)
        else:
            coords = [
                self.node_map[n] for n in element.get('nodes') or [] if n in self.node_map
            ]
        if not coords:
            return
        fid = str(element.get('id'))
        line = LineString(coordinates=coords)

        if tags.get('building'):
            self._building(fid, line, tags)
        elif tags.get('highway'):
            rtype = tags['highway']
            if rtype in ROAD_EXCLUDED_TYPES:
                return
            width = road_width_category(rtype)
            lanes = _parse_int(tags.get('lanes')) or ROAD_DEFAULT_LANES[width]
            self.features.roads.append(
                Road(
                    id=fid,
                    geometry=line,
                    type=rtype,
                    lane_count=lanes,
                    width_category=width,
                    one_way=tags.get('oneway') == 'yes',
                    color=palette_color('roads', rtype),
                )
            )
        elif tags.get('railway'):
            rtype = tags['railway']
            self.features.railways.append(
                Railway(
                    id=fid,
                    geometry=line,
                    type=rtype,
                    track_count=_parse_int(tags.get('tracks')) or 1,
                    color=palette_color('railways', rtype),
                )
            )
        elif _is_water(tags):
            wtype = (
                tags.get('waterway')
                or tags.get('water')
                or tags.get('natural')
                or tags.get('landuse')
                or 'water'
            )
            self._water(fid, line, wtype, is_area=line.is_closed)
        elif tags.get('aeroway') == 'aerodrome':
            self._airport(fid, line, tags)
        elif tags.get('natural'):
            self._vegetation(fid, line, tags['natural'], tags)
        elif tags.get('landuse'):
            self._land_use(fid, line, tags)

    def node(self, element: dict[str, Any]) -> None:
        tags: dict[str, str] = element.get('tags') or {}
        lat, lon = element.get('lat'), element.get('lon')
        if not tags or not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            return
        fid = str(element.get('id'))
        point = Point(coordinates=latlng_to_mercator(lat, lon))

        if tags.get('aeroway') == 'aerodrome':
            self._airport(fid, point, tags)
        elif tags.get('natural') in ('tree', 'trees'):
            self._vegetation(fid, point, 'tree', tags)
        elif tags.get('building'):
            self._building(fid, point, tags)

    def relation(self, element: dict[str, Any]) -> None:
        tags: dict[str, str] = element.get('tags') or {}
        if not tags:
            return
        geometry = element.get('geometry')
        if isinstance(geometry, list):
            rings = [_closed_ring(_to_mercator(geometry))]
        else:
            # out geom puts the geometry on the members; outer ways form the rings
            parts = [
                _to_mercator(member['geometry'])
                for member in element.get('members') or []
                if member.get('role', 'outer') in ('outer', '')
                and isinstance(member.get('geometry'), list)
            ]
            rings = _stitch_rings(parts)
        rings = [r for r in rings if len(r) >= 4]
        if not rings:
            return
        fid = str(element.get('id'))
        for i, ring in enumerate(rings):
            ring_id = fid if len(rings) == 1 else f'{fid}:{i}'
            self._area(ring_id, Polygon(coordinates=[ring]), tags)

    def _area(self, fid: str, polygon: Polygon, tags: dict[str, str]) -> None:
        if tags.get('building'):
            self._building(fid, polygon, tags)
        elif tags.get('aeroway') == 'aerodrome':
            self._airport(fid, polygon, tags)
        elif tags.get('natural') in ('water', 'wetland') or tags.get('landuse') == 'water':
            wtype = tags.get('natural') or tags.get('landuse') or 'water'
            self._water(fid, polygon, wtype, is_area=True)
        elif tags.get('landuse'):
            self._land_use(fid, polygon, tags)
        elif tags.get('natural'):
            self._vegetation(fid, polygon, tags['natural'], tags)


def parse_osm_elements(payload: dict[str, Any]) -> ContextFeatures:
    """Classify an Overpass ``out geom`` response into visual features."""
    elements = payload.get('elements')
    if not isinstance(elements, list):
        return ContextFeatures()

    elements = [e for e in elements if isinstance(e, dict)]
    node_map: dict[int, tuple[float, float]] = {}
    for element in elements:
        if element.get('type') == 'node' and isinstance(element.get('id'), int):
            lat, lon = element.get('lat'), element.get('lon')
            if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
                node_map[element['id']] = latlng_to_mercator(lat, lon)

    classifier = _Classifier(node_map)
    for element in elements:
        kind = element.get('type')
        if kind == 'way':
            classifier.way(element)
        elif kind == 'node':
            classifier.node(element)
        elif kind == 'relation':
            classifier.relation(element)

    features = classifier.features
    logger.debug('Classified %d of %d OSM elements', features.count(), len(elements))
    return features
