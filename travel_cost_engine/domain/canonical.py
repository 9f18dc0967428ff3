"""
Canonical cache keys for coordinate pairs.

1. **Grid snapping**  -- each coordinate is rounded to ``precision`` decimal
   degrees (5 by default, ~1.1 m at the equator).
2. **Ordering**       -- distance is symmetric, so the two snapped points are
   sorted; ``(a, b)`` and ``(b, a)`` produce the same key.

The snapped points are also what the distance is computed on, so a cache
entry always equals a fresh calculation for its key.
"""

from __future__ import annotations

from dataclasses import dataclass

from .entities import GeoCoordinate

DEFAULT_PRECISION = 5


@dataclass(frozen=True)
class CanonicalPair:
    key: str
    point_a: str
    point_b: str
    coord_a: GeoCoordinate
    coord_b: GeoCoordinate


def _fmt(value: float, precision: int) -> str:
    text = f"{value:.{precision}f}"
    # -0.00000 and 0.00000 are the same grid cell
    if text.lstrip("-").strip("0.") == "":
        text = text.lstrip("-")
    return text


def canonical_point(coord: GeoCoordinate, precision: int = DEFAULT_PRECISION) -> str:
    """Text form ``"lat,lng"`` of *coord* snapped to the cache grid.

    Longitude 180 is written as -180, and every point at a pole gets
    longitude 0, so each physical point has one key.
    """
    lat = _fmt(coord.latitude, precision)
    lng = _fmt(coord.longitude, precision)
    if abs(float(lat)) == 90:
        lng = _fmt(0.0, precision)
    elif float(lng) == 180:
        lng = _fmt(-180.0, precision)
    return f"{lat},{lng}"


def snap(coord: GeoCoordinate, precision: int = DEFAULT_PRECISION) -> GeoCoordinate:
    lat, lng = canonical_point(coord, precision).split(",")
    return GeoCoordinate(float(lat), float(lng))


def canonical_pair(
    a: GeoCoordinate, b: GeoCoordinate, precision: int = DEFAULT_PRECISION
) -> CanonicalPair:
    snapped = sorted(
        ((canonical_point(c, precision), snap(c, precision)) for c in (a, b)),
        key=lambda item: (item[1].latitude, item[1].longitude),
    )
    (point_a, coord_a), (point_b, coord_b) = snapped
    return CanonicalPair(
        key=f"{point_a}|{point_b}",
        point_a=point_a,
        point_b=point_b,
        coord_a=coord_a,
        coord_b=coord_b,
    )
