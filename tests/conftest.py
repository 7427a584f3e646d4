"""
tests/conftest.py
~~~~~~~~~~~~~~~~~
Global pytest fixtures.

Provides in-process fakes for every pipeline collaborator (stores,
providers, a hand-cranked clock) so no test touches the network or sleeps
on the real monotonic clock.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from nearby_feed.models import BusinessRecord, Coordinate, Origin


pytest_plugins = ["pytest_asyncio"]


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """LocalStore / PlacesProvider stand-in recording every query."""

    def __init__(self, records: list[BusinessRecord] | None = None) -> None:
        self.records = list(records or [])
        self.calls: list[Coordinate] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def query(self, coordinate: Coordinate, radius_m: int | None = None) -> list[BusinessRecord]:
        self.calls.append(coordinate)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.records)


def make_record(
    rid: str,
    rating: float,
    *,
    lat: float = 40.0,
    lon: float = -75.0,
    origin: Origin = Origin.LOCAL,
    name: str | None = None,
    category: str = "Uncategorized",
) -> BusinessRecord:
    return BusinessRecord(
        id=rid,
        name=name or f"Business {rid}",
        coordinate=Coordinate(lat, lon),
        category=category,
        rating=rating,
        review_count=10,
        origin=origin,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def record() -> Callable[..., BusinessRecord]:
    return make_record


@pytest.fixture
def here() -> Coordinate:
    return Coordinate(40.0, -75.0)
