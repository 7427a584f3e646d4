"""pipeline.py
~~~~~~~~~~~~~~
Orchestrate gate → guard → concurrent fetch → merge → delivery.

Lifecycle
---------
``IDLE → STARTING → TRACKING → STOPPING → IDLE``

* :meth:`UpdatePipeline.start` asks both sources for permission, subscribes,
  runs one immediate fetch cycle with the best reading available and enters
  ``TRACKING``. Any failure rolls back the subscriptions already made and
  leaves the pipeline ``IDLE``. Calling it while tracking is a no-op.
* Each source event runs as its own task on the pipeline's loop. Listeners
  may be called from any thread; events are handed over with
  ``call_soon_threadsafe``.
* :meth:`UpdatePipeline.stop` unsubscribes, cancels in-flight remote calls,
  waits (bounded) for running cycles and clears the gate and guard. A cycle
  that outlives the wait still finishes, but its feed is discarded.
* With a :class:`~nearby_feed.visits.VisitLog` attached, every accepted
  location is checked against the latest feed for a visit once its fetch
  cycle is over.

Delivery
--------
Feeds reach ``on_feed_updated`` through a delivery context (by default
:class:`~nearby_feed.delivery.SerialDelivery`) on the pipeline's event loop,
in trigger order and never concurrently with itself.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from . import config
from .change_gate import ChangeGate
from .delivery import DeliveryContext, FeedCallback, SerialDelivery
from .exceptions import NearbyFeedError, PermissionDenied, SourceUnavailable
from .merge import MergeRanker
from .models import BusinessRecord, Coordinate, Feed, LocationReading, SignalReading
from .query_guard import QueryGuard
from .sources import (
    LocalStore,
    LocationSource,
    PlacesProvider,
    SignalSource,
    SubscriptionHandle,
)
from .visits import VisitLog

LOG = logging.getLogger("pipeline")


class PipelineStatus(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    TRACKING = "tracking"
    STOPPING = "stopping"


@dataclass(frozen=True)
class PipelineSettings:
    min_interval_s: float = 1.0
    min_distance_m: float = 10.0
    min_signal_delta_dbm: float = 5.0
    per_origin_cap: int = 3
    search_radius_m: int = 5000
    remote_timeout_s: float = 10.0
    stop_timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            min_interval_s=config.GATE_MIN_INTERVAL_MS / 1000.0,
            min_distance_m=config.GATE_MIN_DISTANCE_M,
            min_signal_delta_dbm=config.GATE_MIN_SIGNAL_DBM,
            per_origin_cap=config.FEED_PER_ORIGIN_CAP,
            search_radius_m=config.SEARCH_RADIUS_M,
            remote_timeout_s=config.REMOTE_TIMEOUT_S,
            stop_timeout_s=config.STOP_TIMEOUT_S,
        )


class UpdatePipeline:
    def __init__(
        self,
        location_source: LocationSource,
        signal_source: SignalSource,
        local_store: LocalStore,
        places_provider: PlacesProvider,
        on_feed_updated: Optional[FeedCallback] = None,
        *,
        settings: Optional[PipelineSettings] = None,
        delivery: Optional[DeliveryContext] = None,
        visits: Optional[VisitLog] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if delivery is None:
            if on_feed_updated is None:
                raise ValueError("either on_feed_updated or delivery is required")
            delivery = SerialDelivery(on_feed_updated)

        self.settings = settings or PipelineSettings.from_env()
        self._location_source = location_source
        self._signal_source = signal_source
        self._local_store = local_store
        self._places = places_provider
        self._delivery = delivery
        self.visits = visits

        # One lock for every piece of shared pipeline state. Held for state
        # transitions only, never across an await.
        self._state_lock = threading.Lock()
        self.gate = ChangeGate(
            min_interval_s=self.settings.min_interval_s,
            min_distance_m=self.settings.min_distance_m,
            min_signal_delta_dbm=self.settings.min_signal_delta_dbm,
            clock=clock,
            lock=self._state_lock,
        )
        self.guard = QueryGuard(self._state_lock)
        self.ranker = MergeRanker(self.settings.per_origin_cap)

        self._lifecycle = asyncio.Lock()
        self._status = PipelineStatus.IDLE
        self._generation = 0
        self._current: Optional[Coordinate] = None
        self._last_feed: Optional[Feed] = None
        self._handles: list[tuple[Any, SubscriptionHandle]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set[asyncio.Task] = set()
        self._remote_tasks: set[asyncio.Task] = set()

    # ── Introspection ─────────────────────────────────────────────────────
    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def current_coordinate(self) -> Optional[Coordinate]:
        return self._current

    @property
    def last_feed(self) -> Optional[Feed]:
        """Most recent feed handed to the delivery context this session."""
        return self._last_feed

    # ── Lifecycle ─────────────────────────────────────────────────────────
    async def start(self) -> None:
        """Begin tracking. Raises ``PermissionDenied`` / ``SourceUnavailable``."""
        async with self._lifecycle:
            if self._status is PipelineStatus.TRACKING:
                LOG.debug("[pipeline] start() while tracking – no-op")
                return

            self._status = PipelineStatus.STARTING
            self._loop = asyncio.get_running_loop()
            LOG.info("[pipeline] starting")
            try:
                await self._subscribe(self._location_source, self._on_location)
                await self._subscribe(self._signal_source, self._on_signal)
            except Exception:
                await self._release_handles()
                self._status = PipelineStatus.IDLE
                raise

            await self._initial_cycle()
            self._status = PipelineStatus.TRACKING
            LOG.info("[pipeline] tracking")

    async def stop(self) -> None:
        """Stop tracking and reset state. No-op while idle."""
        async with self._lifecycle:
            if self._status is PipelineStatus.IDLE:
                return

            self._status = PipelineStatus.STOPPING
            self._generation += 1
            LOG.info("[pipeline] stopping")

            errors = await self._release_handles()

            for task in list(self._remote_tasks):
                task.cancel()

            pending = [t for t in self._tasks if not t.done()]
            if pending:
                _, still_running = await asyncio.wait(
                    pending, timeout=self.settings.stop_timeout_s
                )
                if still_running:
                    LOG.warning(
                        "[pipeline] %d fetch cycle(s) still running after %.1fs; "
                        "their results will be discarded",
                        len(still_running),
                        self.settings.stop_timeout_s,
                    )

            self.gate.reset()
            self.guard.reset()
            with self._state_lock:
                self._current = None
            self._last_feed = None
            self._status = PipelineStatus.IDLE
            LOG.info("[pipeline] idle")

            if errors:
                raise SourceUnavailable(f"unsubscribe failed: {errors[0]}") from errors[0]

    async def aclose(self) -> None:
        """Stop tracking and shut the delivery context down."""
        try:
            await self.stop()
        finally:
            await self._delivery.aclose()

    async def __aenter__(self) -> "UpdatePipeline":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def join(self) -> None:
        """Wait until every event task scheduled so far has finished."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Subscriptions ─────────────────────────────────────────────────────
    async def _subscribe(self, source: Any, listener: Callable[[Any], None]) -> None:
        name = type(source).__name__
        try:
            granted = await source.request_permission()
        except NearbyFeedError:
            raise
        except Exception as exc:
            raise SourceUnavailable(f"{name}: {exc}") from exc
        if not granted:
            raise PermissionDenied(f"{name}: permission not granted")

        try:
            handle = await source.subscribe(listener)
        except NearbyFeedError:
            raise
        except Exception as exc:
            raise SourceUnavailable(f"{name}: {exc}") from exc
        self._handles.append((source, handle))

    async def _release_handles(self) -> list[Exception]:
        errors: list[Exception] = []
        while self._handles:
            source, handle = self._handles.pop()
            try:
                await source.unsubscribe(handle)
            except Exception as exc:  # noqa: BLE001 – keep releasing the rest
                LOG.error("[pipeline] unsubscribe %s failed: %s", type(source).__name__, exc)
                errors.append(exc)
        return errors

    async def _initial_cycle(self) -> None:
        try:
            reading = await self._location_source.current_location()
        except Exception as exc:  # noqa: BLE001 – no fix yet is not fatal
            LOG.warning("[pipeline] current location unavailable: %s", exc)
            reading = None

        if reading is None:
            LOG.info("[pipeline] no location fix yet; waiting for first event")
            return

        with self._state_lock:
            self._current = reading.coordinate
        try:
            await self._guarded_cycle(reading.coordinate, "start", self._generation)
        except Exception as exc:  # noqa: BLE001
            LOG.error("[pipeline] initial fetch failed: %s", exc, exc_info=True)

    # ── Event entry points (any thread) ───────────────────────────────────
    def _on_location(self, reading: LocationReading) -> None:
        self._dispatch(self._handle_location, reading)

    def _on_signal(self, reading: SignalReading) -> None:
        self._dispatch(self._handle_signal, reading)

    def _dispatch(self, handler: Callable[[Any, int], Awaitable[None]], reading: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        generation = self._generation
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(handler, reading, generation)
        else:
            loop.call_soon_threadsafe(self._spawn, handler, reading, generation)

    def _spawn(self, handler: Callable[[Any, int], Awaitable[None]], reading: Any, generation: int) -> None:
        if self._status is not PipelineStatus.TRACKING or generation != self._generation:
            return
        task = asyncio.ensure_future(handler(reading, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Event handlers ────────────────────────────────────────────────────
    async def _handle_location(self, reading: LocationReading, generation: int) -> None:
        try:
            with self._state_lock:
                self._current = reading.coordinate
            if not self.gate.accept_location(reading):
                return
            await self._guarded_cycle(reading.coordinate, "location", generation)
            if self.visits is not None and generation == self._generation and self._last_feed is not None:
                self.visits.observe(reading, self._last_feed.records)
        except Exception as exc:  # noqa: BLE001 – one bad event must not stop tracking
            LOG.error("[pipeline] location event failed: %s", exc, exc_info=True)

    async def _handle_signal(self, reading: SignalReading, generation: int) -> None:
        try:
            coordinate = self._current
            if coordinate is None:
                LOG.debug("[pipeline] signal change before any location fix, dropped")
                return
            if not self.gate.accept_signal(reading.strength_dbm):
                return
            await self._guarded_cycle(coordinate, "signal", generation)
        except Exception as exc:  # noqa: BLE001
            LOG.error("[pipeline] signal event failed: %s", exc, exc_info=True)

    # ── Fetch cycle ───────────────────────────────────────────────────────
    async def _guarded_cycle(self, coordinate: Coordinate, cause: str, generation: int) -> bool:
        with self.guard.slot() as acquired:
            if not acquired:
                return False
            LOG.info(
                "[pipeline] %s trigger → fetch at %.5f, %.5f",
                cause,
                coordinate.latitude,
                coordinate.longitude,
            )
            await self._fetch_cycle(coordinate, generation)
            return True

    async def _fetch_cycle(self, coordinate: Coordinate, generation: int) -> None:
        local_task = asyncio.ensure_future(self._local_store.query(coordinate))
        remote_task = asyncio.ensure_future(self._query_remote(coordinate))
        self._remote_tasks.add(remote_task)
        remote_task.add_done_callback(self._remote_tasks.discard)

        try:
            local = await local_task
        except BaseException:
            remote_task.cancel()
            raise

        # A remote call cancelled before it even started contributes [] too.
        await asyncio.wait({remote_task})
        remote = [] if remote_task.cancelled() else remote_task.result()

        feed = self.ranker.merge(local, remote, coordinate)
        if generation != self._generation:
            LOG.info("[pipeline] session ended during fetch; feed discarded")
            return
        self._last_feed = feed
        await self._delivery.deliver(feed)
        LOG.info(
            "[pipeline] delivered %d local + %d remote",
            feed.local_count,
            feed.remote_count,
        )

    async def _query_remote(self, coordinate: Coordinate) -> list[BusinessRecord]:
        """Remote records, or ``[]`` whenever the provider cannot answer."""
        try:
            return await asyncio.wait_for(
                self._places.query(coordinate, self.settings.search_radius_m),
                timeout=self.settings.remote_timeout_s,
            )
        except asyncio.CancelledError:
            LOG.info("[pipeline] remote query cancelled")
            return []
        except asyncio.TimeoutError:
            LOG.warning(
                "[pipeline] remote query timed out after %.1fs",
                self.settings.remote_timeout_s,
            )
            return []
        except Exception as exc:  # noqa: BLE001 – ProviderFailure and friends
            LOG.warning("[pipeline] remote query failed: %s", exc)
            return []


__all__ = ["PipelineSettings", "PipelineStatus", "UpdatePipeline"]
