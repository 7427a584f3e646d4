"""
local_store.py
~~~~~~~~~~~~~~
In-memory stand-in for the on-device business dataset.

Records are filtered to the search radius around the query point and
returned with ``origin=LOCAL``. Nothing is persisted.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable

from . import config
from .geo import distance_km
from .models import BusinessRecord, Coordinate, Origin

LOG = logging.getLogger("local_store")


class InMemoryLocalStore:
    def __init__(
        self,
        records: Iterable[BusinessRecord] = (),
        radius_m: float = config.SEARCH_RADIUS_M,
    ) -> None:
        self.radius_m = radius_m
        self._records = [
            r if r.origin is Origin.LOCAL else dataclasses.replace(r, origin=Origin.LOCAL)
            for r in records
        ]

    def add(self, record: BusinessRecord) -> None:
        self._records.append(dataclasses.replace(record, origin=Origin.LOCAL))

    @property
    def records(self) -> tuple[BusinessRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    async def query(self, coordinate: Coordinate) -> list[BusinessRecord]:
        limit_km = self.radius_m / 1000.0
        hits = [r for r in self._records if distance_km(coordinate, r.coordinate) <= limit_km]
        LOG.debug("[local] %d of %d records within %.0f m", len(hits), len(self._records), self.radius_m)
        return hits


__all__ = ["InMemoryLocalStore"]
