"""
road_line.py — Coordinate math and the assembled road line.

Coordinates are (lon, lat) tuples in WGS84 degrees, the same order GeoJSON
uses, so lines can be written to disk without reshuffling.
"""

import math
from datetime import datetime, timezone

from config import (
    ENDPOINT_KEY_PRECISION, GEOMETRY_SOURCE, ROAD_CACHE_VERSION, ROAD_PREFIX,
)

EARTH_RADIUS_KM = 6371.0


class InvalidGeometry(ValueError):
    """A road assembled to fewer than two coordinates."""


# ── Distances ────────────────────────────────────────────────────────

def haversine_km(a, b) -> float:
    """Return the great-circle distance in km between two (lon, lat) points."""
    lon1, lat1 = a
    lon2, lat2 = b
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def line_length_km(coords) -> float:
    return sum(haversine_km(coords[i], coords[i + 1])
               for i in range(len(coords) - 1))


def endpoint_key(coord) -> str:
    """Key a coordinate to ~1 m so format noise does not split endpoints."""
    # + 0.0 folds -0.0 into 0.0
    lon, lat = (round(v, ENDPOINT_KEY_PRECISION) + 0.0 for v in coord)
    return f"{lon:.{ENDPOINT_KEY_PRECISION}f},{lat:.{ENDPOINT_KEY_PRECISION}f}"


def same_point(a, b) -> bool:
    return endpoint_key(a) == endpoint_key(b)


def _lerp(a, b, t):
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)


def interpolate_along(coords, distance_km):
    """Return the point `distance_km` along the line.

    Distances past either end snap to that end.
    """
    if distance_km <= 0:
        return tuple(coords[0])
    travelled = 0.0
    for i in range(len(coords) - 1):
        seg = haversine_km(coords[i], coords[i + 1])
        if seg > 0 and travelled + seg >= distance_km:
            return _lerp(coords[i], coords[i + 1], (distance_km - travelled) / seg)
        travelled += seg
    return tuple(coords[-1])


def slice_along(coords, start_km, stop_km):
    """Cut the part of the line between two distances from its start.

    Interior vertices are kept; the two ends are interpolated.  Repeated
    points are collapsed, so a zero-length cut comes back as one point.
    """
    out = [interpolate_along(coords, start_km)]
    travelled = 0.0
    for i in range(len(coords) - 1):
        travelled += haversine_km(coords[i], coords[i + 1])
        if travelled >= stop_km:
            break
        if travelled > start_km:
            out.append(tuple(coords[i + 1]))
    out.append(interpolate_along(coords, stop_km))

    cleaned = [out[0]]
    for pt in out[1:]:
        if pt != cleaned[-1]:
            cleaned.append(pt)
    return cleaned


# ── Assembled road line ──────────────────────────────────────────────

def road_label(road_id: str) -> str:
    return f"{ROAD_PREFIX}{road_id}"


class RoadLine:
    """One stitched centerline for a road, as cached on disk.

    `length_km` is recomputed every time `coords` is assigned.
    """

    def __init__(self, road_id, coords, cache_version=ROAD_CACHE_VERSION,
                 source=GEOMETRY_SOURCE, updated_at=None):
        self.road_id = road_id
        self.coords = coords
        self.cache_version = cache_version
        self.source = source
        self.updated_at = updated_at or datetime.now(timezone.utc).isoformat()

    @property
    def coords(self):
        return self._coords

    @coords.setter
    def coords(self, value):
        coords = [(float(lon), float(lat)) for lon, lat in value]
        if len(coords) < 2:
            raise InvalidGeometry(f"Invalid geometry for {road_label(self.road_id)}")
        self._coords = coords
        self._length_km = line_length_km(coords)

    @property
    def length_km(self) -> float:
        return self._length_km

    def to_feature(self) -> dict:
        return {
            "type": "Feature",
            "properties": {
                "road": road_label(self.road_id),
                "lengthKm": round(self.length_km, 2),
                "source": self.source,
                "updatedAt": self.updated_at,
                "cacheVersion": self.cache_version,
            },
            "geometry": {
                "type": "LineString",
                "coordinates": [list(c) for c in self.coords],
            },
        }

    @classmethod
    def from_feature(cls, road_id, feature):
        props = feature.get("properties") or {}
        geometry = feature.get("geometry") or {}
        if geometry.get("type") != "LineString":
            raise InvalidGeometry(f"Expected LineString for {road_label(road_id)}")
        return cls(
            road_id,
            geometry.get("coordinates") or [],
            cache_version=props.get("cacheVersion"),
            source=props.get("source", GEOMETRY_SOURCE),
            updated_at=props.get("updatedAt"),
        )

    def __repr__(self):
        return (f"RoadLine({road_label(self.road_id)}, {len(self.coords)} pts, "
                f"{self.length_km:.2f} km)")
