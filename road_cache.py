"""
road_cache.py — On-disk store of assembled road lines.

One GeoJSON Feature per road (``BR-101.geojson``).  Every file carries the
cache version it was written with; a file from any other version reads as a
miss so the road is downloaded and assembled again.
"""

import json
import logging
from pathlib import Path

from config import ROAD_CACHE_DIR, ROAD_CACHE_VERSION
from road_line import InvalidGeometry, RoadLine, road_label

logger = logging.getLogger(__name__)


class RoadCache:

    def __init__(self, cache_dir=ROAD_CACHE_DIR, version=ROAD_CACHE_VERSION):
        self.cache_dir = Path(cache_dir)
        self.version = version

    def path_for(self, road_id: str) -> Path:
        return self.cache_dir / f"{road_label(road_id)}.geojson"

    def read(self, road_id: str):
        """Return the cached RoadLine, or None when absent, unreadable or stale."""
        path = self.path_for(road_id)
        if not path.exists():
            return None
        try:
            feature = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {path}: {e}")
            return None

        if not isinstance(feature, dict) or not isinstance(feature.get("properties"), dict):
            logger.warning(f"Ignoring cache file {path} that is not a GeoJSON Feature")
            return None

        version = feature["properties"].get("cacheVersion")
        if version != self.version:
            logger.debug(f"{path.name} has cache version {version}, expected {self.version}")
            return None

        try:
            return RoadLine.from_feature(road_id, feature)
        except (InvalidGeometry, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring cache file {path} with bad geometry: {e}")
            return None

    def write(self, road_id: str, line: RoadLine) -> Path:
        feature = line.to_feature()
        feature["properties"]["cacheVersion"] = self.version
        path = self.path_for(road_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(feature), encoding="utf-8")
        logger.debug(f"Cached {road_label(road_id)} to {path}")
        return path
