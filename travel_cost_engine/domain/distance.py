"""
Distance calculation using the Haversine formula.

Assumption
----------
Allowances are paid on straight-line (great-circle) distance between an
employee's home and the subproject site, on a spherical Earth with mean
radius 6371 km.  Over tens to hundreds of kilometres the error against an
ellipsoidal model stays within a few hundred metres, which is below the
precision that matters for a per-kilometre allowance.

Results are rounded to 3 decimals (metres), so the value is stable enough
to be cached and to reproduce historical audit figures.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math

from .entities import GeoCoordinate
from .errors import ComputationError, ValidationError

EARTH_RADIUS_KM = 6_371.0
DISTANCE_DECIMALS = 3


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    # rounding can push near-antipodal points just above 1.0
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(a, 1.0)))


def distance(a: GeoCoordinate, b: GeoCoordinate) -> float:
    """Distance in km between *a* and *b*, rounded to metre precision.

    Pure and deterministic: identical inputs always give a bit-identical
    result, and ``distance(a, b) == distance(b, a)``.
    """
    if not isinstance(a, GeoCoordinate) or not isinstance(b, GeoCoordinate):
        raise ValidationError(
            "distance() expects two GeoCoordinate values",
            fields=["employee_location", "subproject_location"],
        )
    if a == b:
        return 0.0

    km = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
    if not math.isfinite(km) or km < 0:
        raise ComputationError(f"Invalid distance {km!r} for {a} -> {b}")
    return round(km, DISTANCE_DECIMALS)
