"""visits.py
~~~~~~~~~~~
Recently visited businesses.

A visit is recorded when a location fix is precise enough
(``accuracy_m <= VISIT_ACCURACY_M``) and the nearest record of the latest
feed lies within ``VISIT_RADIUS_M`` of it. The log keeps the most recent
visit per business, newest first, capped at ``RECENT_VISITS_MAX``.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from . import config
from .geo import distance_km
from .models import UTC, BusinessRecord, LocationReading

LOG = logging.getLogger("visits")


@dataclass(frozen=True)
class Visit:
    record: BusinessRecord
    visited_at: dt.datetime
    distance_m: float

    def as_dict(self) -> dict:
        return {
            **self.record.as_dict(),
            "visited_at": self.visited_at.isoformat(),
            "distance_m": round(self.distance_m, 1),
        }


class VisitLog:
    def __init__(
        self,
        *,
        accuracy_threshold_m: float = config.VISIT_ACCURACY_M,
        radius_m: float = config.VISIT_RADIUS_M,
        max_entries: int = config.RECENT_VISITS_MAX,
    ) -> None:
        self.accuracy_threshold_m = accuracy_threshold_m
        self.radius_m = radius_m
        self.max_entries = max_entries
        self._visits: list[Visit] = []

    def __len__(self) -> int:
        return len(self._visits)

    def recent(self) -> tuple[Visit, ...]:
        return tuple(self._visits)

    def observe(
        self,
        reading: LocationReading,
        candidates: Iterable[BusinessRecord],
    ) -> Optional[Visit]:
        """Record a visit to the closest candidate, if *reading* qualifies."""
        if reading.accuracy_m > self.accuracy_threshold_m:
            return None

        best: Optional[tuple[float, BusinessRecord]] = None
        for rec in candidates:
            d_m = distance_km(reading.coordinate, rec.coordinate) * 1000.0
            if d_m <= self.radius_m and (best is None or d_m < best[0]):
                best = (d_m, rec)
        if best is None:
            return None

        d_m, rec = best
        visit = Visit(rec, reading.timestamp.astimezone(UTC), d_m)
        self._visits = [
            v for v in self._visits if (v.record.id, v.record.origin) != (rec.id, rec.origin)
        ]
        self._visits.insert(0, visit)
        del self._visits[self.max_entries :]
        LOG.info("[visits] at %s (%.0f m)", rec.name, d_m)
        return visit

    def clear(self) -> None:
        self._visits.clear()


__all__ = ["Visit", "VisitLog"]
