"""sources.py
~~~~~~~~~~~~
Collaborator contracts consumed by the pipeline, plus in-process "push"
sources the HTTP host feeds from device reports.

Every ``subscribe`` returns a :class:`SubscriptionHandle`; the pipeline owns
that handle and gives it back through ``unsubscribe`` when it stops.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Protocol, TypeVar

from .exceptions import PermissionDenied, SourceUnavailable
from .models import BusinessRecord, Coordinate, LocationReading, SignalReading

LOG = logging.getLogger("sources")

T = TypeVar("T")

LocationListener = Callable[[LocationReading], None]
SignalListener = Callable[[SignalReading], None]

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int
    source: str


# ── Contracts ─────────────────────────────────────────────────────────────


class LocationSource(Protocol):
    async def request_permission(self) -> bool: ...

    async def current_location(self) -> Optional[LocationReading]: ...

    async def subscribe(self, listener: LocationListener) -> SubscriptionHandle: ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None: ...


class SignalSource(Protocol):
    async def request_permission(self) -> bool: ...

    async def subscribe(self, listener: SignalListener) -> SubscriptionHandle: ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None: ...


class PlacesProvider(Protocol):
    async def query(self, coordinate: Coordinate, radius_m: int) -> list[BusinessRecord]: ...


class LocalStore(Protocol):
    async def query(self, coordinate: Coordinate) -> list[BusinessRecord]: ...


# ── Push sources ──────────────────────────────────────────────────────────


def signal_from_accuracy(accuracy_m: float) -> float:
    """Approximate Wi-Fi strength (dBm) from a fix's accuracy radius."""
    return -50.0 - accuracy_m * 2.0


class _PushSource(Generic[T]):
    """Fan readings pushed by the host out to subscribed listeners."""

    name = "push"

    def __init__(self, *, granted: bool = True, available: bool = True) -> None:
        self.granted = granted
        self.available = available
        self._listeners: dict[SubscriptionHandle, Callable[[T], None]] = {}
        self.latest: Optional[T] = None

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    async def request_permission(self) -> bool:
        return self.granted

    async def subscribe(self, listener: Callable[[T], None]) -> SubscriptionHandle:
        if not self.granted:
            raise PermissionDenied(f"{self.name} access not granted")
        if not self.available:
            raise SourceUnavailable(f"{self.name} is unavailable")
        handle = SubscriptionHandle(next(_handle_ids), self.name)
        self._listeners[handle] = listener
        LOG.debug("[%s] subscribed #%d", self.name, handle.id)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if self._listeners.pop(handle, None) is None:
            LOG.warning("[%s] unknown subscription #%d", self.name, handle.id)

    def emit(self, reading: T) -> None:
        self.latest = reading
        for listener in list(self._listeners.values()):
            listener(reading)


class PushLocationSource(_PushSource[LocationReading]):
    name = "location"

    async def current_location(self) -> Optional[LocationReading]:
        return self.latest


class PushSignalSource(_PushSource[SignalReading]):
    name = "signal"


__all__ = [
    "LocalStore",
    "LocationListener",
    "LocationSource",
    "PlacesProvider",
    "PushLocationSource",
    "PushSignalSource",
    "SignalListener",
    "SignalSource",
    "SubscriptionHandle",
    "signal_from_accuracy",
]
