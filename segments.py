"""
segments.py — Load the monitored radar segments from the spreadsheet export.

The CSV has free-form preamble rows; the table starts after the row whose
first cell contains ``ESTADO``.  Columns: UF, road, km start, km end.
"""

import csv
import logging
import math
import re
from pathlib import Path
from typing import NamedTuple

from config import CSV_HEADER_MARKER, ROAD_NUMBER_WIDTH

logger = logging.getLogger(__name__)

_LEADING_NUMBER_RE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")


class MonitoredSegment(NamedTuple):
    uf: str
    road: str
    km_start: float
    km_end: float

    @property
    def length_km(self) -> float:
        return abs(self.km_end - self.km_start)


def parse_km(value):
    """Parse a Brazilian-formatted km mark such as ``1.234,5`` or ``12O,3``.

    Returns None when nothing numeric can be read.
    """
    if value is None:
        return None
    cleaned = str(value).strip()
    if not cleaned:
        return None
    # OCR confuses the letter O with zero; dots are thousands separators
    cleaned = re.sub(r"[oO]", "0", cleaned)
    cleaned = cleaned.replace(".", "").replace(",", ".", 1)
    cleaned = re.sub(r"\s+", "", cleaned)

    match = _LEADING_NUMBER_RE.match(cleaned)
    if not match:
        return None
    num = float(match.group(0))
    return num if math.isfinite(num) else None


def normalize_road(value: str) -> str:
    """``BR-40`` -> ``040``; text without digits is kept as-is (trimmed)."""
    digits = re.sub(r"\D", "", value)
    cleaned = digits if digits else value.strip()
    return cleaned.rjust(ROAD_NUMBER_WIDTH, "0")


def parse_rows(rows) -> list:
    rows = list(rows)
    header_index = next(
        (i for i, row in enumerate(rows) if row and CSV_HEADER_MARKER in row[0]),
        None,
    )
    if header_index is None:
        raise ValueError("Spreadsheet header not found")

    segments = []
    dropped = 0
    for row in rows[header_index + 1:]:
        if len(row) < 2 or not row[0] or not row[1]:
            continue
        uf, road = row[0], row[1]
        km_start = parse_km(row[2]) if len(row) > 2 else None
        km_end = parse_km(row[3]) if len(row) > 3 else None
        if km_start is None or km_end is None:
            dropped += 1
            continue
        segments.append(MonitoredSegment(uf.strip(), normalize_road(road), km_start, km_end))

    if dropped:
        logger.warning(f"Dropped {dropped} row(s) with unreadable km values")
    return segments


def load_segments(csv_path) -> list:
    path = Path(csv_path)
    with open(path, newline="", encoding="utf-8") as f:
        segments = parse_rows(csv.reader(f))
    logger.info(f"Loaded {len(segments)} segments from {path}")
    return segments


def unique_roads(segments) -> list:
    return sorted({seg.road for seg in segments})
