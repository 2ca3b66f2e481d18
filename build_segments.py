#!/usr/bin/env python3
"""
build_segments.py — Radar-monitored federal highway segments as GeoJSON.

Stages:
  1. Load    — read monitored segments (UF, road, km start, km end) from CSV
  2. Fetch   — one assembled line per road, from cache or Overpass
  3. Slice   — cut each segment's km range out of its road line
  4. Write   — emit a FeatureCollection for the map

Usage:
    python3 build_segments.py                     # full build
    python3 build_segments.py --offline           # cached roads only
    python3 build_segments.py --assembly relation # prefer relation order
    python3 build_segments.py --stats             # log km per UF at the end
    python3 build_segments.py -h                  # show this help

Any road that cannot be fetched or assembled aborts the whole build; no
partial output is written.
"""

import argparse
import json
import logging
from collections import defaultdict
from pathlib import Path

from config import CSV_PATH, DEFAULT_ASSEMBLY, LOG_FILE, OUTPUT_FILE, ROAD_CACHE_DIR
from overpass_client import (
    DownloadThrottle, FetchError, OverpassClient, build_relation_query, build_ways_query,
)
from road_assembly import (
    build_line_from_fragments, build_line_from_relation, pick_relation,
    relations_from_payload, ways_from_payload,
)
from road_cache import RoadCache
from road_line import InvalidGeometry, RoadLine, road_label
from segment_slicer import build_feature_collection
from segments import load_segments, unique_roads

logger = logging.getLogger(__name__)


class MissingRoad(LookupError):
    """Offline build asked for a road that is not in the cache."""


# ── Stage 2: Fetch ────────────────────────────────────────────────────

def fetch_road(client: OverpassClient, road_id: str, assembly: str = DEFAULT_ASSEMBLY) -> RoadLine:
    """Download every fragment of a road and assemble it into one line."""
    label = road_label(road_id)

    relation_payload = client.fetch(build_relation_query(road_id))
    relation_ways = ways_from_payload(relation_payload)
    ways_payload = client.fetch(build_ways_query(road_id))

    fragments = dict(relation_ways)
    for way_id, coords in ways_from_payload(ways_payload).items():
        fragments.setdefault(way_id, coords)
    logger.info(f"{label}: {len(fragments)} way fragments "
                f"({len(relation_ways)} from relations)")

    coords = None
    if assembly == "relation":
        relation = pick_relation(relations_from_payload(relation_payload))
        coords = build_line_from_relation(relation, relation_ways)
        if coords is None:
            logger.info(f"{label}: no usable relation, assembling from fragments")
    if coords is None:
        coords = build_line_from_fragments(list(fragments.values()))

    if not coords or len(coords) < 2:
        raise InvalidGeometry(f"Invalid geometry for {label}")
    return RoadLine(road_id, coords)


def load_road_lines(road_ids, cache: RoadCache, client=None, throttle=None,
                    offline=False, assembly=DEFAULT_ASSEMBLY) -> dict:
    """Read each road from the cache, downloading (and caching) the misses."""
    client = client or OverpassClient()
    throttle = throttle or DownloadThrottle()
    lines = {}

    for n, road_id in enumerate(road_ids, 1):
        line = cache.read(road_id)
        if line is not None:
            logger.info(f"{road_label(road_id)} cached ({line.length_km:.1f} km)")
            lines[road_id] = line
            continue
        if offline:
            raise MissingRoad(f"Offline mode but {road_label(road_id)} is not cached")

        logger.info(f"Downloading {road_label(road_id)} ({n}/{len(road_ids)})...")
        throttle.wait()
        line = fetch_road(client, road_id, assembly)
        throttle.mark()
        cache.write(road_id, line)
        logger.info(f"{road_label(road_id)}: {len(line.coords)} points, {line.length_km:.1f} km")
        lines[road_id] = line

    return lines


# ── Stage 4: Write ────────────────────────────────────────────────────

def write_output(collection: dict, output_file) -> Path:
    path = Path(output_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(collection, f, indent=2)
    logger.info(f"GeoJSON written to {path}")
    return path


def get_statistics(collection: dict) -> dict:
    """Summarize the output: segment count, roads, monitored km per UF."""
    features = collection.get("features", [])
    if not features:
        return {}

    km_by_uf = defaultdict(float)
    roads = set()
    for feature in features:
        props = feature["properties"]
        km_by_uf[props["uf"]] += props["lengthKm"]
        roads.add(props["road"])

    return {
        "total_segments": len(features),
        "total_roads": len(roads),
        "total_length_km": round(sum(km_by_uf.values()), 2),
        "km_by_uf": {uf: round(km, 2) for uf, km in sorted(km_by_uf.items())},
    }


def build(csv_path=CSV_PATH, cache_dir=ROAD_CACHE_DIR, output_file=OUTPUT_FILE,
          offline=False, assembly=DEFAULT_ASSEMBLY, client=None, throttle=None) -> dict:
    segments = load_segments(csv_path)
    roads = unique_roads(segments)
    logger.info(f"Segments: {len(segments)}, distinct roads: {len(roads)}")

    cache = RoadCache(cache_dir)
    logger.info(f"Using road cache version {cache.version}")
    lines = load_road_lines(roads, cache, client=client, throttle=throttle,
                            offline=offline, assembly=assembly)

    collection = build_feature_collection(segments, lines)
    write_output(collection, output_file)
    return collection


# ── Main ─────────────────────────────────────────────────────────────

def configure_logging(log_file=LOG_FILE, verbose=False) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Build radar-monitored highway segments GeoJSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--csv", default=CSV_PATH, help="Monitored segments CSV")
    p.add_argument("--cache-dir", default=ROAD_CACHE_DIR, help="Road geometry cache directory")
    p.add_argument("--out", default=OUTPUT_FILE, help="Output GeoJSON file")
    p.add_argument("--offline", action="store_true",
                   help="Never query Overpass; every road must already be cached")
    p.add_argument("--assembly", choices=("graph", "relation"), default=DEFAULT_ASSEMBLY,
                   help="How way fragments are joined into a road line")
    p.add_argument("--stats", action="store_true", help="Log monitored km per UF")
    p.add_argument("--log-file", default=LOG_FILE, help="Log file ('' to disable)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None) -> bool:
    args = parse_args(argv)
    configure_logging(args.log_file, args.verbose)

    try:
        collection = build(args.csv, args.cache_dir, args.out,
                           offline=args.offline, assembly=args.assembly)
    except (FetchError, InvalidGeometry, MissingRoad) as e:
        logger.error(f"Build aborted: {e}")
        return False
    except (OSError, ValueError) as e:
        logger.error(f"Build failed: {e}")
        return False

    if args.stats:
        stats = get_statistics(collection)
        logger.info(f"Segment statistics: {json.dumps(stats, indent=2)}")

    logger.info("Pipeline completed successfully")
    return True


if __name__ == "__main__":
    raise SystemExit(0 if main() else 1)
