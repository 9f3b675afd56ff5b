"""Visual map features extracted from OpenStreetMap data.

Only properties the renderer needs are kept; raw OSM tags never leave the
parser. Coordinates are Web Mercator metres.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from shared.constants import AIRPORT_DEFAULT_NAME


class Point(BaseModel):
    type: Literal['Point'] = 'Point'
    coordinates: tuple[float, float]


class LineString(BaseModel):
    type: Literal['LineString'] = 'LineString'
    coordinates: list[tuple[float, float]]

    @property
    def is_closed(self) -> bool:
        return len(self.coordinates) >= 2 and self.coordinates[0] == self.coordinates[-1]


class Polygon(BaseModel):
    type: Literal['Polygon'] = 'Polygon'
    # Rings; the first is the outer boundary, each ring is closed
    coordinates: list[list[tuple[float, float]]]


Geometry = Annotated[Union[Point, LineString, Polygon], Field(discriminator='type')]

HeightCategory = Literal['small', 'medium', 'tall']
WidthCategory = Literal['small', 'medium', 'large']


class Feature(BaseModel):
    id: str
    geometry: Geometry
    type: str
    color: str


class Building(Feature):
    height: float
    level_count: int | None = None


class Road(Feature):
    lane_count: int
    width_category: WidthCategory
    one_way: bool = False


class Railway(Feature):
    track_count: int = 1


class Water(Feature):
    is_area: bool


class Airport(Feature):
    name: str = AIRPORT_DEFAULT_NAME


class Vegetation(Feature):
    height: float | None = None
    height_category: HeightCategory


class LandUse(Feature):
    pass


class ContextFeatures(BaseModel):
    """All features of one context tile, grouped by visual category."""

    buildings: list[Building] = Field(default_factory=list)
    roads: list[Road] = Field(default_factory=list)
    railways: list[Railway] = Field(default_factory=list)
    waters: list[Water] = Field(default_factory=list)
    airports: list[Airport] = Field(default_factory=list)
    vegetation: list[Vegetation] = Field(default_factory=list)
    land_use: list[LandUse] = Field(default_factory=list)

    def count(self) -> int:
        return (
            len(self.buildings)
            + len(self.roads)
            + len(self.railways)
            + len(self.waters)
            + len(self.airports)
            + len(self.vegetation)
            + len(self.land_use)
        )
