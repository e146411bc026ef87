# caredispatch/core/dispatch/geo.py
"""
Location codec and nearest-volunteer matching.

Distances are planar Euclidean over raw decimal degrees:

    sqrt((lat2 - lat1)^2 + (lon2 - lon1)^2)

This is a known approximation. A degree of longitude shrinks with
latitude, so rankings are only approximately right away from the equator.
It is kept as-is because the matching contract is defined in degrees;
switching to a great-circle formula changes which volunteer wins and
needs a new contract.
"""
from __future__ import annotations

import math
import re
from typing import Iterable, Optional, Sequence, TypeVar

from caredispatch.core.dispatch.domain import Coordinate
from caredispatch.core.dispatch.errors import ValidationError

__all__ = [
    "parse_location",
    "format_location",
    "planar_distance",
    "nearest",
]

K = TypeVar("K")

# Plain decimal or exponent notation. float() alone would also take "1_2".
# Non-finite words pass here so they are reported as non-finite below.
_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?(?:inf|infinity|nan)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# "lat,lon" codec
# ---------------------------------------------------------------------------

def parse_location(raw: str | None) -> Coordinate:
    """Parse a ``"lat,lon"`` string.

    Raises ``ValidationError`` on anything that is not exactly two finite
    numbers. Bad input never falls back to ``(0, 0)``.
    """
    if raw is None or not str(raw).strip():
        raise ValidationError("location is required")

    parts = str(raw).split(",")
    if len(parts) != 2:
        raise ValidationError(f"location must be 'lat,lon', got {raw!r}")

    lat_raw, lon_raw = parts[0].strip(), parts[1].strip()
    if not (_NUMBER.fullmatch(lat_raw) and _NUMBER.fullmatch(lon_raw)):
        raise ValidationError(f"location components must be numeric, got {raw!r}")
    lat, lon = float(lat_raw), float(lon_raw)

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError(f"location components must be finite, got {raw!r}")

    return Coordinate(latitude=lat, longitude=lon)


def format_location(coord: Coordinate) -> str:
    """Inverse of :func:`parse_location`."""
    return f"{coord.latitude},{coord.longitude}"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def planar_distance(a: Coordinate, b: Coordinate) -> float:
    """Euclidean distance in degrees (not metres)."""
    return math.sqrt(
        (b.latitude - a.latitude) ** 2 + (b.longitude - a.longitude) ** 2
    )


def nearest(
    target: Coordinate,
    candidates: Iterable[tuple[K, Coordinate]] | Sequence[tuple[K, Coordinate]],
) -> Optional[K]:
    """Return the id of the candidate closest to ``target``.

    Single O(n) pass. Only a strictly smaller distance replaces the current
    best, so on exact ties the candidate scanned first wins. Callers must
    pass candidates in a reproducible order. Returns ``None`` for an empty
    candidate set.
    """
    best_id: Optional[K] = None
    best_distance = math.inf

    for candidate_id, coord in candidates:
        distance = planar_distance(target, coord)
        if distance < best_distance:
            best_distance = distance
            best_id = candidate_id

    return best_id
