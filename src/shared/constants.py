import math

# --- Web Mercator projection
# Earth radius used by Web Mercator (metres)
EARTH_RADIUS_M = 6378137.0
# Half-width of the projected world; valid x/y lie in [-MAX_EXTENT, MAX_EXTENT]
MERCATOR_MAX_EXTENT_M = EARTH_RADIUS_M * math.pi
WGS84_CODE = 4326
WEB_MERCATOR_CODE = 3857
# Highest zoom level accepted by the coordinate mapper
MAX_ZOOM = 28

# --- Elevation tiles (Terrarium PNG)
ELEVATION_TILE_URL = (
    'https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{zoom}/{col}/{row}.png'
)
# Raster tiles are square grids of this many samples per side
ELEVATION_TILE_SIZE = 256
# Terrarium offset: elevation = R*256 + G + B/256 - TERRARIUM_OFFSET_M
TERRARIUM_OFFSET_M = 32768.0
ELEVATION_ZOOM = 15
ELEVATION_RING_RADIUS = 1
ELEVATION_MAX_CONCURRENT_LOADS = 3

# --- Context tiles (OpenStreetMap via Overpass)
OVERPASS_ENDPOINT = 'https://overpass-api.de/api/interpreter'
OVERPASS_STATUS_ENDPOINT = 'https://overpass-api.de/api/status'
CONTEXT_ZOOM = 14
CONTEXT_RING_RADIUS = 1
CONTEXT_MAX_CONCURRENT_LOADS = 3
# Overpass query timeout (seconds)
CONTEXT_QUERY_TIMEOUT_S = 30.0
# How often the status endpoint is polled (seconds)
STATUS_POLL_INTERVAL_S = 30.0
# Status endpoint request timeout (seconds)
STATUS_TIMEOUT_S = 5.0
# Status report is considered fresh for this long (seconds)
STATUS_CACHE_TTL_S = 30.0
# Delay before each Overpass query when no trustworthy status is available
STATUS_FALLBACK_THROTTLE_S = 0.2
# Upper bound for a single wait on the next free Overpass slot (seconds)
STATUS_MAX_SLOT_WAIT_S = 60.0

# --- Loading and retries
# Per-attempt network timeout (seconds)
HTTP_TIMEOUT_DEFAULT = 20.0
HTTP_RETRIES_DEFAULT = 3
# Sent with every request; Overpass asks clients to identify themselves
HTTP_USER_AGENT = 'tilering/0.1 (+https://github.com/tilering/tilering)'
# Connection pool size shared by both tile kinds and the status monitor
HTTP_CONNECTION_LIMIT = 16
# First backoff delay; attempt n waits RETRY_BASE_DELAY_S * 2**n
RETRY_BASE_DELAY_S = 0.1
# Fixed wait after a rate-limited response before the single extra retry
RATE_LIMIT_RETRY_DELAY_S = 1.0
# Maximum time a load may wait in the scheduler queue for a free slot
QUEUE_WAIT_TIMEOUT_S = 60.0

# --- Persistent tile store
TILE_STORE_ENABLED = True
TILE_STORE_DIR = '.cache/tile-store'
TILE_STORE_TTL_HOURS = 24
ELEVATION_STORE_NAMESPACE = 'elevation'
CONTEXT_STORE_NAMESPACE = 'context'

# --- HTTP status codes
HTTP_OK = 200
HTTP_TOO_MANY_REQUESTS = 429

# --- Initial observer position (Paris, Ile de la Cite)
INITIAL_LATITUDE = 48.853
INITIAL_LONGITUDE = 2.3499

# --- Context feature classification
# Height of one building level when only building:levels is tagged (metres)
BUILDING_LEVEL_HEIGHT_M = 3.0
# Road types that never produce visual features
ROAD_EXCLUDED_TYPES = frozenset(
    {'footway', 'path', 'cycleway', 'steps', 'pedestrian', 'bridleway', 'corridor'}
)
ROAD_LARGE_TYPES = frozenset(
    {'motorway', 'motorway_link', 'trunk', 'trunk_link', 'primary', 'primary_link'}
)
ROAD_MEDIUM_TYPES = frozenset(
    {'secondary', 'secondary_link', 'tertiary', 'tertiary_link'}
)
# Default lane counts by width category when lanes=* is missing
ROAD_DEFAULT_LANES = {'large': 2, 'medium': 2, 'small': 1}
# Vegetation height thresholds (metres): below SMALL -> small, below TALL -> medium
VEGETATION_SMALL_MAX_M = 5.0
VEGETATION_TALL_MIN_M = 20.0
# Vegetation height category when no height is tagged
VEGETATION_DEFAULT_HEIGHT_CATEGORY = {
    'forest': 'tall',
    'wood': 'tall',
    'tree': 'medium',
    'trees': 'medium',
    'scrub': 'small',
    'hedge': 'small',
    'heath': 'small',
    'grass': 'small',
    'grassland': 'small',
}
AIRPORT_DEFAULT_NAME = 'Unknown Airport'

# Colour palette per feature category; 'default' is used for unknown types
COLOR_PALETTE: dict[str, dict[str, str]] = {
    'buildings': {
        'residential': '#c4b8a0',
        'commercial': '#cc99ff',
        'industrial': '#888888',
        'office': '#cc99ff',
        'retail': '#ff99cc',
        'apartments': '#c4b8a0',
        'detached': '#d4c4b0',
        'house': '#d4c4b0',
        'other': '#aaaaaa',
        'default': '#c4b8a0',
    },
    'roads': {
        'motorway': '#e0a56e',
        'trunk': '#ddb855',
        'primary': '#ddb855',
        'secondary': '#f7e6b8',
        'tertiary': '#f7e6b8',
        'residential': '#ffffff',
        'service': '#ffffff',
        'other': '#ffffff',
        'default': '#ffffff',
    },
    'railways': {
        'rail': '#888888',
        'light_rail': '#666666',
        'tram': '#666666',
        'metro': '#ff0000',
        'monorail': '#888888',
        'other': '#888888',
        'default': '#888888',
    },
    'waters': {
        'river': '#5588dd',
        'stream': '#5588dd',
        'canal': '#5588dd',
        'lake': '#3366cc',
        'pond': '#3366cc',
        'reservoir': '#3366cc',
        'wetland': '#88dd99',
        'water': '#3366cc',
        'other': '#3366cc',
        'default': '#3366cc',
    },
    'vegetation': {
        'forest': '#2d8a2d',
        'wood': '#3d9d3d',
        'scrub': '#669966',
        'grass': '#99cc99',
        'grassland': '#99cc99',
        'tree': '#4da64d',
        'hedge': '#669966',
        'other': '#99cc99',
        'default': '#2d8a2d',
    },
    'land_use': {
        'residential': '#e0dfdf',
        'commercial': '#f2dad9',
        'industrial': '#ebdbe8',
        'agricultural': '#eef0d5',
        'grass': '#cdebb0',
        'sand': '#f5e9c6',
        'default': '#e0dfdf',
    },
    'airports': {
        'aerodrome': '#ffff99',
        'default': '#ffff99',
    },
}


def palette_color(category: str, feature_type: str | None) -> str:
    """Colour for a feature type within a palette category."""
    colors = COLOR_PALETTE[category]
    if feature_type and feature_type in colors:
        return colors[feature_type]
    return colors['default']
