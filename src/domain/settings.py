"""Validated runtime settings for the tile layers and the persistent store."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from shared.constants import (
    CONTEXT_MAX_CONCURRENT_LOADS,
    CONTEXT_QUERY_TIMEOUT_S,
    CONTEXT_RING_RADIUS,
    CONTEXT_ZOOM,
    ELEVATION_MAX_CONCURRENT_LOADS,
    ELEVATION_RING_RADIUS,
    ELEVATION_TILE_URL,
    ELEVATION_ZOOM,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    INITIAL_LATITUDE,
    INITIAL_LONGITUDE,
    MAX_ZOOM,
    OVERPASS_ENDPOINT,
    OVERPASS_STATUS_ENDPOINT,
    QUEUE_WAIT_TIMEOUT_S,
    RATE_LIMIT_RETRY_DELAY_S,
    RETRY_BASE_DELAY_S,
    STATUS_CACHE_TTL_S,
    STATUS_FALLBACK_THROTTLE_S,
    STATUS_MAX_SLOT_WAIT_S,
    STATUS_POLL_INTERVAL_S,
    STATUS_TIMEOUT_S,
    TILE_STORE_DIR,
    TILE_STORE_ENABLED,
    TILE_STORE_TTL_HOURS,
)


class LayerSettings(BaseModel):
    """Settings common to every ring-managed tile layer."""

    model_config = {'extra': 'ignore'}

    zoom: int
    # Tiles in each direction from the centre tile (1 = 3x3 ring)
    ring_radius: int
    max_concurrent_loads: int
    max_retries: int = HTTP_RETRIES_DEFAULT
    # Per-attempt network timeout
    request_timeout_s: float = HTTP_TIMEOUT_DEFAULT
    # Time a load may wait for a free concurrency slot
    queue_timeout_s: float = QUEUE_WAIT_TIMEOUT_S
    retry_base_delay_s: float = RETRY_BASE_DELAY_S
    rate_limit_delay_s: float = RATE_LIMIT_RETRY_DELAY_S

    @field_validator('zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        if not (0 <= v <= MAX_ZOOM):
            msg = f'zoom must be within [0, {MAX_ZOOM}]'
            raise ValueError(msg)
        return v

    @field_validator('ring_radius', 'max_retries')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            msg = 'value must not be negative'
            raise ValueError(msg)
        return v

    @field_validator('max_concurrent_loads')
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            msg = 'max_concurrent_loads must be at least 1'
            raise ValueError(msg)
        return v

    @field_validator(
        'request_timeout_s',
        'queue_timeout_s',
        'retry_base_delay_s',
        'rate_limit_delay_s',
    )
    @classmethod
    def validate_duration(cls, v: float) -> float:
        v = float(v)
        if v < 0:
            msg = 'durations must not be negative'
            raise ValueError(msg)
        return v


class ElevationSettings(LayerSettings):
    zoom: int = ELEVATION_ZOOM
    ring_radius: int = ELEVATION_RING_RADIUS
    max_concurrent_loads: int = ELEVATION_MAX_CONCURRENT_LOADS
    # Must contain {zoom}, {col} and {row}
    tile_url_template: str = ELEVATION_TILE_URL

    @field_validator('tile_url_template')
    @classmethod
    def validate_template(cls, v: str) -> str:
        for part in ('{zoom}', '{col}', '{row}'):
            if part not in v:
                msg = f'tile_url_template is missing {part}'
                raise ValueError(msg)
        return v


class ContextSettings(LayerSettings):
    zoom: int = CONTEXT_ZOOM
    ring_radius: int = CONTEXT_RING_RADIUS
    max_concurrent_loads: int = CONTEXT_MAX_CONCURRENT_LOADS
    request_timeout_s: float = CONTEXT_QUERY_TIMEOUT_S
    overpass_endpoint: str = OVERPASS_ENDPOINT
    # Poll the Overpass status endpoint for slot availability
    status_check_enabled: bool = True
    status_endpoint: str = OVERPASS_STATUS_ENDPOINT
    status_poll_interval_s: float = STATUS_POLL_INTERVAL_S
    status_timeout_s: float = STATUS_TIMEOUT_S
    status_cache_ttl_s: float = STATUS_CACHE_TTL_S
    fallback_throttle_s: float = STATUS_FALLBACK_THROTTLE_S
    max_slot_wait_s: float = STATUS_MAX_SLOT_WAIT_S

    @field_validator('status_poll_interval_s', 'status_timeout_s', 'status_cache_ttl_s')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        v = float(v)
        if v <= 0:
            msg = 'status intervals must be positive'
            raise ValueError(msg)
        return v


class CacheSettings(BaseModel):
    model_config = {'extra': 'ignore'}

    enabled: bool = TILE_STORE_ENABLED
    # Relative paths are resolved against the working directory
    directory: str = TILE_STORE_DIR
    ttl_hours: float = TILE_STORE_TTL_HOURS

    @property
    def ttl_s(self) -> float:
        return self.ttl_hours * 3600.0


class ObserverSettings(BaseModel):
    model_config = {'extra': 'ignore'}

    latitude: float = INITIAL_LATITUDE
    longitude: float = INITIAL_LONGITUDE

    @field_validator('latitude')
    @classmethod
    def validate_latitude(cls, v: float) -> float:
        if not (-85.0511 <= v <= 85.0511):
            msg = 'latitude is outside the Web Mercator range'
            raise ValueError(msg)
        return v

    @field_validator('longitude')
    @classmethod
    def validate_longitude(cls, v: float) -> float:
        if not (-180.0 <= v <= 180.0):
            msg = 'longitude must be within [-180, 180]'
            raise ValueError(msg)
        return v


class SimulatorSettings(BaseModel):
    """Everything the tile service needs, usually loaded from a TOML profile."""

    model_config = {'extra': 'ignore'}

    elevation: ElevationSettings = Field(default_factory=ElevationSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    observer: ObserverSettings = Field(default_factory=ObserverSettings)
