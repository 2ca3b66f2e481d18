# config.py — Radar segment map pipeline configuration
# Edit this file to change endpoints, retry pacing, thresholds, paths, etc.

# ── Overpass ─────────────────────────────────────────────────────────
# Interchangeable interpreters.  The client starts with the first one and
# rotates through the list on network errors, 429s and 5xx responses.
OVERPASS_ENDPOINTS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
]

# Server-side query timeout (seconds).  National highways are big; the
# HTTP read timeout is this plus a small margin.
OVERPASS_TIMEOUT = 900
HTTP_TIMEOUT_MARGIN = 30

# ── Retry pacing ─────────────────────────────────────────────────────
MAX_ATTEMPTS = 5

# Wait = min(BACKOFF_CAP, attempt * step)
NETWORK_BACKOFF_STEP = 4
SERVER_BACKOFF_STEP = 5
BACKOFF_CAP = 30

# 429 handling: Retry-After (or the default) times the attempt, capped.
RATE_LIMIT_DEFAULT_WAIT = 10
RATE_LIMIT_CAP = 60

# Minimum spacing (seconds) between two successful road downloads.
# Cache hits do not count.
MIN_DOWNLOAD_DELAY = 6

# ── Road identifiers ─────────────────────────────────────────────────
ROAD_PREFIX = "BR-"
ROAD_NUMBER_WIDTH = 3
GEOMETRY_SOURCE = "OpenStreetMap / Overpass API"

# ── Assembly ─────────────────────────────────────────────────────────
# Decimal places used to key way endpoints (~1 m at 5 places).
ENDPOINT_KEY_PRECISION = 5

# Max endpoint distance (km) for joining two disconnected components.
MAX_STITCH_GAP_KM = 15

# "graph" stitches every fragment by endpoint adjacency; "relation" walks
# the route relation's member order first and falls back to "graph".
DEFAULT_ASSEMBLY = "graph"

# ── Slicing ──────────────────────────────────────────────────────────
# Consecutive points farther apart than this (km) are a coverage hole,
# so the sliced geometry is split there.
MAX_GAP_KM = 8

# Degenerate slices get a 2-point stand-in of this length:
# max(MIN_FALLBACK_KM, min(MAX_FALLBACK_KM, total * FALLBACK_FRACTION))
MIN_FALLBACK_KM = 0.05
MAX_FALLBACK_KM = 1.0
FALLBACK_FRACTION = 0.01

# ── Cache / input / output files ─────────────────────────────────────
# Bump ROAD_CACHE_VERSION whenever assembly changes; older files are ignored.
ROAD_CACHE_VERSION = 4
ROAD_CACHE_DIR = "data/roads"
CSV_PATH = "data/radar_trechos.csv"
CSV_HEADER_MARKER = "ESTADO"
OUTPUT_FILE = "public/data/trechos.geojson"
LOG_FILE = "build_segments.log"
