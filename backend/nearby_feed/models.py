"""models.py
~~~~~~~~~~~
Value types flowing through the pipeline.

Readings are produced by the location / signal sources and discarded once
the change gate has looked at them. Business records come from the local
store and the remote places provider; a :class:`Feed` is what the
subscriber finally receives.
"""

from __future__ import annotations

import datetime as dt
import enum
import math
from dataclasses import dataclass, field
from typing import Iterator

from dateutil import tz

UTC = tz.UTC


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


@dataclass(frozen=True)
class Coordinate:
    """WGS-84 position in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError(f"non-finite coordinate ({self.latitude}, {self.longitude})")
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude {self.latitude} outside [-90, 90]")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude {self.longitude} outside [-180, 180]")

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.latitude, "lon": self.longitude}


@dataclass(frozen=True)
class LocationReading:
    coordinate: Coordinate
    accuracy_m: float = 0.0
    timestamp: dt.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SignalReading:
    strength_dbm: float
    timestamp: dt.datetime = field(default_factory=_now)


class Origin(str, enum.Enum):
    """Which backing source produced a record."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class BusinessRecord:
    """
    One place shown in the feed.

    ``id`` is unique per origin only; the same business may appear once
    from the local store and once from the places provider.
    """

    id: str
    name: str
    coordinate: Coordinate
    category: str = "Uncategorized"
    rating: float = 0.0
    review_count: int = 0
    origin: Origin = Origin.LOCAL
    last_updated: dt.datetime = field(default_factory=_now)
    address: str = ""
    photos: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"rating {self.rating} outside [0, 5] for {self.id!r}")
        if self.review_count < 0:
            raise ValueError(f"negative review_count for {self.id!r}")

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "rating": self.rating,
            "review_count": self.review_count,
            "origin": self.origin.value,
            "address": self.address,
            "photos": list(self.photos),
            "last_updated": self.last_updated.isoformat(),
            **self.coordinate.as_dict(),
        }


@dataclass(frozen=True)
class Feed:
    """Local slice followed by the Remote slice, each capped independently."""

    records: tuple[BusinessRecord, ...]
    query: Coordinate | None = None
    local_count: int = 0
    remote_count: int = 0
    generated_at: dt.datetime = field(default_factory=_now)

    @property
    def local(self) -> tuple[BusinessRecord, ...]:
        return self.records[: self.local_count]

    @property
    def remote(self) -> tuple[BusinessRecord, ...]:
        return self.records[self.local_count :]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[BusinessRecord]:
        return iter(self.records)

    def as_dict(self) -> dict:
        return {
            "records": [r.as_dict() for r in self.records],
            "query": self.query.as_dict() if self.query else None,
            "local_count": self.local_count,
            "remote_count": self.remote_count,
            "generated_at": self.generated_at.isoformat(),
        }


__all__ = [
    "BusinessRecord",
    "Coordinate",
    "Feed",
    "LocationReading",
    "Origin",
    "SignalReading",
]
