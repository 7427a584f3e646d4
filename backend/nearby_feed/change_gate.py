"""change_gate.py
~~~~~~~~~~~~~~~~~~
Debounce raw location / signal chatter before it can trigger a re-query.

A reading is *significant* when it is far enough from the last accepted
one of its kind **and** at least ``min_interval_s`` has passed since the
last accepted reading of *either* kind. Location and signal share that one
interval clock.

State is mutated only under the lock handed in by the owning pipeline, so
the gate and the :class:`~nearby_feed.query_guard.QueryGuard` form a single
mutual-exclusion scope.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from . import config
from .geo import distance_km
from .models import Coordinate, LocationReading

LOG = logging.getLogger("change_gate")


class ChangeGate:
    def __init__(
        self,
        *,
        min_interval_s: float = config.GATE_MIN_INTERVAL_MS / 1000.0,
        min_distance_m: float = config.GATE_MIN_DISTANCE_M,
        min_signal_delta_dbm: float = config.GATE_MIN_SIGNAL_DBM,
        clock: Callable[[], float] = time.monotonic,
        lock: threading.Lock | None = None,
    ) -> None:
        self.min_interval_s = min_interval_s
        self.min_distance_m = min_distance_m
        self.min_signal_delta_dbm = min_signal_delta_dbm
        self._clock = clock
        self._lock = lock or threading.Lock()

        self._last_location: Coordinate | None = None
        self._last_signal: float | None = None
        self._last_accepted_at: float | None = None

    @property
    def last_location(self) -> Coordinate | None:
        return self._last_location

    @property
    def last_signal(self) -> float | None:
        return self._last_signal

    def _too_soon(self, now: float) -> bool:
        if self._last_accepted_at is None:
            return False
        return now - self._last_accepted_at < self.min_interval_s

    def accept_location(self, reading: LocationReading) -> bool:
        """Return ``True`` (and remember *reading*) when it is a real move."""
        with self._lock:
            now = self._clock()
            if self._too_soon(now):
                LOG.debug("[gate] location within min interval, dropped")
                return False

            if self._last_location is not None:
                moved_m = distance_km(self._last_location, reading.coordinate) * 1000.0
                if moved_m < self.min_distance_m:
                    LOG.debug("[gate] moved %.1f m < %.1f m, dropped", moved_m, self.min_distance_m)
                    return False

            self._last_location = reading.coordinate
            self._last_accepted_at = now
            return True

    def accept_signal(self, strength_dbm: float) -> bool:
        """Return ``True`` (and remember *strength_dbm*) on a large enough swing."""
        if not math.isfinite(strength_dbm):
            LOG.debug("[gate] non-finite signal %r, dropped", strength_dbm)
            return False
        with self._lock:
            now = self._clock()
            if self._too_soon(now):
                LOG.debug("[gate] signal within min interval, dropped")
                return False

            if self._last_signal is not None:
                delta = abs(strength_dbm - self._last_signal)
                if delta < self.min_signal_delta_dbm:
                    LOG.debug("[gate] signal delta %.1f dBm too small, dropped", delta)
                    return False

            self._last_signal = strength_dbm
            self._last_accepted_at = now
            return True

    def reset(self) -> None:
        """Forget every accepted reading (tracking session ended)."""
        with self._lock:
            self._last_location = None
            self._last_signal = None
            self._last_accepted_at = None


__all__ = ["ChangeGate"]
