"""geo.py
~~~~~~~~
Great-circle distance between two :class:`~nearby_feed.models.Coordinate`.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from .constants import R_EARTH_KM

if TYPE_CHECKING:
    from .models import Coordinate


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great‑circle distance (km) between *lat1/lon1* and *lat2/lon2*."""

    φ1, φ2 = map(math.radians, (lat1, lat2))
    dφ = math.radians(lat2 - lat1)
    dλ = math.radians(lon2 - lon1)
    a = math.sin(dφ / 2) ** 2 + math.cos(φ1) * math.cos(φ2) * math.sin(dλ / 2) ** 2
    return 2 * R_EARTH_KM * math.asin(math.sqrt(a))


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """
    Haversine distance between two coordinates.

    Pure function. NaN inputs propagate NaN; callers are expected to pass
    validated coordinates.
    """
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


__all__ = ["distance_km", "haversine_km"]
