"""
segment_slicer.py — Cut monitored km ranges out of assembled road lines.
"""

import logging

from shapely.geometry import LineString, MultiLineString, mapping

from config import (
    FALLBACK_FRACTION, MAX_FALLBACK_KM, MAX_GAP_KM, MIN_FALLBACK_KM,
)
from road_line import haversine_km, interpolate_along, road_label, slice_along

logger = logging.getLogger(__name__)


def clamp(value, low, high):
    return min(max(value, low), high)


def normalize_range(km_start, km_end, total_km):
    """Order the two marks and clamp both to [0, total_km]."""
    start = clamp(min(km_start, km_end), 0, total_km)
    end = clamp(max(km_start, km_end), 0, total_km)
    return start, end


def split_by_gap(coords, max_gap_km=MAX_GAP_KM) -> list:
    """Break the line wherever two consecutive points are too far apart.

    Runs shorter than two points are dropped.
    """
    if not coords or len(coords) < 2:
        return []
    chunks = []
    current = [coords[0]]
    for prev, curr in zip(coords, coords[1:]):
        if haversine_km(prev, curr) > max_gap_km:
            if len(current) > 1:
                chunks.append(current)
            current = [curr]
        else:
            current.append(curr)
    if len(current) > 1:
        chunks.append(current)
    return chunks


def _fallback_coords(coords, start, end, total_km):
    """Two points around a zero-length range so it still shows on the map."""
    delta = max(MIN_FALLBACK_KM, min(MAX_FALLBACK_KM, total_km * FALLBACK_FRACTION))
    lo = clamp(start - delta / 2, 0, total_km)
    hi = clamp(end + delta / 2, 0, total_km)
    if lo == hi:
        if hi >= total_km:
            lo = max(0, total_km - delta)
        else:
            hi = min(total_km, hi + delta)
    return [interpolate_along(coords, lo), interpolate_along(coords, hi)]


def slice_road(road_line, km_start, km_end, max_gap_km=MAX_GAP_KM):
    """Return (geometry, start, end) for one km range of a road.

    The geometry is a shapely LineString, or a MultiLineString when the
    range crosses holes in the road's coverage.
    """
    total = road_line.length_km
    start, end = normalize_range(km_start, km_end, total)

    coords = slice_along(road_line.coords, start, end)
    if len(coords) < 2:
        coords = _fallback_coords(road_line.coords, start, end, total)

    chunks = split_by_gap(coords, max_gap_km)
    if not chunks:
        geometry = LineString(coords)
    elif len(chunks) == 1:
        geometry = LineString(chunks[0])
    else:
        geometry = MultiLineString(chunks)
    return geometry, start, end


def build_feature(segment, road_line) -> dict:
    """Slice one monitored segment into an output GeoJSON feature."""
    geometry, start, end = slice_road(road_line, segment.km_start, segment.km_end)
    if geometry.geom_type == "MultiLineString":
        logger.debug(f"{road_label(segment.road)} km {start:.1f}-{end:.1f} "
                     f"split into {len(geometry.geoms)} parts")
    return {
        "type": "Feature",
        "geometry": mapping(geometry),
        "properties": {
            "uf": segment.uf,
            "road": road_label(segment.road),
            "roadNumber": segment.road,
            "kmStart": round(start, 2),
            "kmEnd": round(end, 2),
            "lengthKm": round(end - start, 2),
        },
    }


def build_feature_collection(segments, road_lines: dict) -> dict:
    features = []
    for segment in segments:
        road_line = road_lines.get(segment.road)
        if road_line is None:
            raise KeyError(f"Geometry for {road_label(segment.road)} not loaded")
        features.append(build_feature(segment, road_line))
    return {"type": "FeatureCollection", "features": features}
