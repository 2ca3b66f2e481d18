"""
road_assembly.py — Turn Overpass way fragments into one line per road.

  1. Graph   — chain fragments that share endpoints into maximal components
  2. Stitch  — join leftover components end-to-end across small gaps
  3. Relation — alternative: follow a route relation's member order

Coordinates are (lon, lat) tuples throughout.
"""

import logging
from collections import defaultdict

from config import MAX_STITCH_GAP_KM
from road_line import endpoint_key, haversine_km, line_length_km, same_point

logger = logging.getLogger(__name__)


# ── Overpass elements ────────────────────────────────────────────────

def coords_from_way(way: dict) -> list:
    """Extract (lon, lat) points from a way returned with 'out geom;'."""
    coords = []
    for pt in way.get("geometry") or []:
        if not pt:
            continue
        lon, lat = pt.get("lon"), pt.get("lat")
        if isinstance(lon, (int, float)) and isinstance(lat, (int, float)):
            coords.append((float(lon), float(lat)))
    return coords


def ways_from_payload(payload: dict) -> dict[int, list]:
    """Map way id -> coordinates for every usable way in a payload."""
    ways = {}
    for elem in payload.get("elements", []):
        if elem.get("type") != "way" or not elem.get("geometry"):
            continue
        coords = coords_from_way(elem)
        if len(coords) >= 2:
            ways[elem.get("id", f"anon-{len(ways)}")] = coords
    return ways


def relations_from_payload(payload: dict) -> list:
    return [e for e in payload.get("elements", []) if e.get("type") == "relation"]


# ── Stage 1: Graph ───────────────────────────────────────────────────

def build_components(fragments) -> list:
    """Chain fragments that share endpoints into maximal components.

    Each fragment ends up in exactly one component.  When several fragments
    meet at one point the most recently indexed unused one wins; that
    choice is arbitrary, not geometric.
    """
    fragments = [list(f) for f in fragments if len(f) >= 2]

    adjacency: dict[str, list[tuple[int, bool]]] = defaultdict(list)
    for idx, coords in enumerate(fragments):
        adjacency[endpoint_key(coords[0])].append((idx, True))
        adjacency[endpoint_key(coords[-1])].append((idx, False))

    used = [False] * len(fragments)

    def take_next(coord):
        entries = adjacency.get(endpoint_key(coord))
        while entries:
            idx, at_start = entries.pop()
            if not used[idx]:
                return idx, at_start
        return None

    def extend(coords, forward):
        while True:
            nxt = take_next(coords[-1] if forward else coords[0])
            if nxt is None:
                return coords
            idx, at_start = nxt
            used[idx] = True
            piece = list(fragments[idx])
            if forward:
                if not at_start:
                    piece.reverse()
                coords = coords + piece[1:]
            else:
                if at_start:
                    piece.reverse()
                coords = piece[:-1] + coords

    components = []
    for i, coords in enumerate(fragments):
        if used[i]:
            continue
        used[i] = True
        chain = extend(list(coords), forward=True)
        chain = extend(chain, forward=False)
        components.append(chain)

    logger.debug(f"Chained {len(fragments)} fragments into {len(components)} components")
    return components


# ── Stage 2: Stitch ──────────────────────────────────────────────────

def stitch_components(components, max_gap_km=MAX_STITCH_GAP_KM):
    """Greedily join components into one line, longest first.

    Each round attaches the remaining component whose nearest endpoint is
    closest to either end of the line.  Once the best gap exceeds
    `max_gap_km` the rest are dropped.
    """
    if not components:
        return None

    pieces = sorted((list(c) for c in components), key=line_length_km, reverse=True)
    merged = pieces.pop(0)

    while pieces:
        head, tail = merged[0], merged[-1]
        best = None
        for idx, piece in enumerate(pieces):
            start, end = piece[0], piece[-1]
            for dist, flip, at_head in (
                (haversine_km(tail, start), False, False),
                (haversine_km(tail, end), True, False),
                (haversine_km(head, end), False, True),
                (haversine_km(head, start), True, True),
            ):
                if best is None or dist < best[0]:
                    best = (dist, flip, at_head, idx)

        dist, flip, at_head, idx = best
        if dist > max_gap_km:
            break

        piece = pieces.pop(idx)
        if flip:
            piece.reverse()
        if at_head:
            if same_point(merged[0], piece[-1]):
                piece.pop()
            merged = piece + merged
        else:
            if same_point(merged[-1], piece[0]):
                piece.pop(0)
            merged = merged + piece

    if pieces:
        logger.info(f"Dropped {len(pieces)} component(s) farther than {max_gap_km} km from the main line")
    return merged


def build_line_from_fragments(fragments):
    components = build_components(fragments)
    if not components:
        return None
    return stitch_components(components)


# ── Stage 3: Relation ────────────────────────────────────────────────

def build_line_from_relation(relation: dict, ways_by_id: dict):
    """Follow the relation's member order, orienting each way to the last point.

    Returns None when fewer than two points come out, meaning the fragment
    path should be used instead.
    """
    if not relation:
        return None

    coords = []
    seen = set()
    for member in relation.get("members") or []:
        ref = member.get("ref")
        if member.get("type") != "way" or ref in seen:
            continue
        way_coords = ways_by_id.get(ref)
        if not way_coords or len(way_coords) < 2:
            continue
        seen.add(ref)

        piece = list(way_coords)
        if member.get("role") == "backward":
            piece.reverse()
        if not coords:
            coords.extend(piece)
            continue

        prev = coords[-1]
        if haversine_km(prev, piece[-1]) < haversine_km(prev, piece[0]):
            piece.reverse()
        if same_point(prev, piece[0]):
            piece = piece[1:]
        coords.extend(piece)

    if len(coords) < 2:
        return None
    return coords


def pick_relation(relations: list):
    """The relation with the most way members, or None."""
    if not relations:
        return None
    return max(relations,
               key=lambda r: sum(1 for m in r.get("members") or [] if m.get("type") == "way"))
