"""merge.py
~~~~~~~~~~
Combine local-store and places-provider results into one display feed.

Algorithm
---------
1. Tag records with their origin (Local / Remote).
2. De-duplicate *within* each origin by identical id. Local and Remote are
   never cross-deduplicated, so the same business may show up in both
   slices.
3. Sort everything by rating (desc), ties by distance to the query point
   (asc).
4. Split back into Local and Remote, keeping that order.
5. Cap each slice at ``per_origin_cap``.
6. Feed = Local slice + Remote slice.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable

from . import config
from .geo import distance_km
from .models import BusinessRecord, Coordinate, Feed, Origin

LOG = logging.getLogger("merge")


def _tag_and_dedupe(records: Iterable[BusinessRecord], origin: Origin) -> list[BusinessRecord]:
    seen: set[str] = set()
    out: list[BusinessRecord] = []
    for rec in records:
        if rec.id in seen:
            continue
        seen.add(rec.id)
        if rec.origin is not origin:
            rec = dataclasses.replace(rec, origin=origin)
        out.append(rec)
    return out


class MergeRanker:
    def __init__(self, per_origin_cap: int = config.FEED_PER_ORIGIN_CAP) -> None:
        if per_origin_cap < 0:
            raise ValueError("per_origin_cap must be >= 0")
        self.per_origin_cap = per_origin_cap

    def rank(self, records: Iterable[BusinessRecord], query: Coordinate) -> list[BusinessRecord]:
        """Rating descending, then nearest first. Stable for full ties."""
        return sorted(records, key=lambda r: (-r.rating, distance_km(query, r.coordinate)))

    def merge(
        self,
        local: Iterable[BusinessRecord],
        remote: Iterable[BusinessRecord],
        query: Coordinate,
    ) -> Feed:
        combined = _tag_and_dedupe(local, Origin.LOCAL) + _tag_and_dedupe(remote, Origin.REMOTE)
        ranked = self.rank(combined, query)

        local_slice = [r for r in ranked if r.origin is Origin.LOCAL][: self.per_origin_cap]
        remote_slice = [r for r in ranked if r.origin is Origin.REMOTE][: self.per_origin_cap]

        LOG.debug(
            "[merge] %d candidates → %d local + %d remote",
            len(combined),
            len(local_slice),
            len(remote_slice),
        )
        return Feed(
            records=tuple(local_slice + remote_slice),
            query=query,
            local_count=len(local_slice),
            remote_count=len(remote_slice),
        )


__all__ = ["MergeRanker"]
