"""
tests/test_pipeline.py
~~~~~~~~~~~~~~~~~~~~~~
End-to-end behaviour of :class:`UpdatePipeline` with in-process sources,
fake stores and a hand-cranked clock.
"""

from __future__ import annotations

import asyncio
import math

import pytest

from conftest import FakeClock, FakeStore, make_record
from nearby_feed.exceptions import PermissionDenied, ProviderFailure, SourceUnavailable
from nearby_feed.models import Coordinate, LocationReading, Origin, SignalReading
from nearby_feed.pipeline import PipelineSettings, PipelineStatus, UpdatePipeline
from nearby_feed.sources import PushLocationSource, PushSignalSource
from nearby_feed.visits import VisitLog

HOME = LocationReading(Coordinate(40.0, -75.0), accuracy_m=5.0)
SHOP = LocationReading(Coordinate(40.01, -75.0), accuracy_m=5.0)  # ≈ 1.1 km north


class _BrokenSignal(PushSignalSource):
    async def subscribe(self, listener):
        raise OSError("wifi adapter missing")


class _StickySignal(PushSignalSource):
    async def unsubscribe(self, handle):
        raise OSError("adapter went away")


def _build(
    clock: FakeClock,
    *,
    local: FakeStore | None = None,
    remote: FakeStore | None = None,
    location: PushLocationSource | None = None,
    signal: PushSignalSource | None = None,
    **overrides,
):
    settings = PipelineSettings(**{"stop_timeout_s": 1.0, "remote_timeout_s": 1.0, **overrides})
    loc = location or PushLocationSource()
    sig = signal or PushSignalSource()
    local = local or FakeStore([make_record("l1", 4.0)])
    remote = remote or FakeStore([make_record("r1", 4.5)])
    feeds: list = []
    pipeline = UpdatePipeline(loc, sig, local, remote, feeds.append, settings=settings, clock=clock)
    return pipeline, loc, sig, local, remote, feeds


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ── Lifecycle ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_start_runs_one_immediate_cycle(clock) -> None:
    pipeline, loc, sig, local, remote, feeds = _build(clock)
    loc.emit(HOME)  # best available reading before tracking starts

    await pipeline.start()

    assert pipeline.status is PipelineStatus.TRACKING
    assert local.calls == [HOME.coordinate]
    assert remote.calls == [HOME.coordinate]
    assert len(feeds) == 1
    assert [r.origin for r in feeds[0]] == [Origin.LOCAL, Origin.REMOTE]
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_start_without_fix_waits_for_first_event(clock) -> None:
    pipeline, loc, _, local, _, feeds = _build(clock)

    await pipeline.start()
    assert feeds == [] and local.calls == []

    loc.emit(HOME)
    await pipeline.join()
    assert len(feeds) == 1
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_start_is_idempotent(clock) -> None:
    pipeline, loc, sig, local, _, feeds = _build(clock)
    loc.emit(HOME)

    await pipeline.start()
    await pipeline.start()

    assert loc.subscriber_count == 1
    assert sig.subscriber_count == 1
    assert len(local.calls) == 1
    assert len(feeds) == 1
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_permission_denied_rolls_back(clock) -> None:
    pipeline, loc, _, _, _, feeds = _build(clock, signal=PushSignalSource(granted=False))

    with pytest.raises(PermissionDenied):
        await pipeline.start()

    assert pipeline.status is PipelineStatus.IDLE
    assert loc.subscriber_count == 0
    assert feeds == []
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_location_permission_denied(clock) -> None:
    pipeline, loc, sig, _, _, _ = _build(clock, location=PushLocationSource(granted=False))

    with pytest.raises(PermissionDenied):
        await pipeline.start()

    assert pipeline.status is PipelineStatus.IDLE
    assert sig.subscriber_count == 0
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_unavailable_source_surfaces(clock) -> None:
    pipeline, loc, _, _, _, _ = _build(clock, signal=PushSignalSource(available=False))
    with pytest.raises(SourceUnavailable):
        await pipeline.start()
    assert loc.subscriber_count == 0
    assert pipeline.status is PipelineStatus.IDLE
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_unexpected_subscribe_error_wrapped(clock) -> None:
    pipeline, loc, _, _, _, _ = _build(clock, signal=_BrokenSignal())
    with pytest.raises(SourceUnavailable, match="wifi adapter missing"):
        await pipeline.start()
    assert loc.subscriber_count == 0
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_stop_while_idle_is_noop(clock) -> None:
    pipeline, *_ = _build(clock)
    await pipeline.stop()
    assert pipeline.status is PipelineStatus.IDLE
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_stop_unsubscribes_and_ignores_later_events(clock) -> None:
    pipeline, loc, sig, local, _, feeds = _build(clock)
    await pipeline.start()
    await pipeline.stop()

    assert loc.subscriber_count == 0 and sig.subscriber_count == 0
    loc.emit(HOME)
    await _settle()
    assert local.calls == [] and feeds == []
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_stop_surfaces_unsubscribe_failure(clock) -> None:
    pipeline, loc, _, _, _, _ = _build(clock, signal=_StickySignal())
    await pipeline.start()

    with pytest.raises(SourceUnavailable):
        await pipeline.stop()

    assert pipeline.status is PipelineStatus.IDLE
    assert loc.subscriber_count == 0
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_restart_resets_gate(clock) -> None:
    """Same spot, same instant: accepted again after stop() + start()."""
    pipeline, loc, _, local, _, feeds = _build(clock)
    await pipeline.start()
    loc.emit(HOME)
    await pipeline.join()
    assert len(feeds) == 1

    await pipeline.stop()
    assert pipeline.gate.last_location is None
    await pipeline.start()  # immediate cycle from the last known reading
    assert len(feeds) == 2

    loc.emit(HOME)
    await pipeline.join()
    assert len(feeds) == 3
    assert len(local.calls) == 3
    await pipeline.aclose()


# ── Event handling ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gate_drops_chatter(clock) -> None:
    pipeline, loc, _, local, _, feeds = _build(clock)
    await pipeline.start()

    loc.emit(HOME)
    await pipeline.join()
    clock.advance(0.3)
    loc.emit(SHOP)  # far, but too soon
    await pipeline.join()
    clock.advance(5)
    loc.emit(LocationReading(Coordinate(40.00002, -75.0)))  # ≈ 2 m from HOME
    await pipeline.join()

    assert len(feeds) == 1
    assert local.calls == [HOME.coordinate]

    clock.advance(5)
    loc.emit(SHOP)
    await pipeline.join()
    assert len(feeds) == 2
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_busy_guard_drops_trigger(clock) -> None:
    local = FakeStore([make_record("l1", 4.0)])
    local.gate = asyncio.Event()
    pipeline, loc, _, _, _, feeds = _build(clock, local=local)
    await pipeline.start()

    loc.emit(HOME)
    await _settle()  # HOME cycle now holds the guard
    clock.advance(2)
    loc.emit(SHOP)  # passes the gate, dropped by the guard
    await _settle()

    local.gate.set()
    await pipeline.join()

    assert local.calls == [HOME.coordinate]
    assert len(feeds) == 1
    assert pipeline.guard.busy is False
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_remote_failure_yields_local_only(clock) -> None:
    remote = FakeStore()
    remote.error = ProviderFailure("502 from places")
    pipeline, loc, _, _, _, feeds = _build(clock, remote=remote)
    await pipeline.start()

    loc.emit(HOME)
    await pipeline.join()

    assert len(feeds) == 1
    assert feeds[0].remote_count == 0
    assert [r.id for r in feeds[0]] == ["l1"]
    assert pipeline.status is PipelineStatus.TRACKING
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_remote_timeout_yields_local_only(clock) -> None:
    remote = FakeStore([make_record("r1", 5.0)])
    remote.gate = asyncio.Event()  # never released
    pipeline, loc, _, _, _, feeds = _build(clock, remote=remote, remote_timeout_s=0.05)
    await pipeline.start()

    loc.emit(HOME)
    await asyncio.wait_for(pipeline.join(), timeout=2)

    assert len(feeds) == 1
    assert feeds[0].local_count == 1 and feeds[0].remote_count == 0
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_event_error_keeps_tracking(clock, caplog) -> None:
    local = FakeStore([make_record("l1", 4.0)])
    local.error = RuntimeError("disk on fire")
    pipeline, loc, _, _, _, feeds = _build(clock, local=local)
    await pipeline.start()

    loc.emit(HOME)
    await pipeline.join()
    assert feeds == []
    assert pipeline.status is PipelineStatus.TRACKING
    assert pipeline.guard.busy is False
    assert "disk on fire" in caplog.text

    local.error = None
    clock.advance(2)
    loc.emit(SHOP)
    await pipeline.join()
    assert len(feeds) == 1
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_signal_refresh_uses_last_coordinate(clock) -> None:
    pipeline, loc, sig, _, remote, feeds = _build(clock)
    await pipeline.start()

    sig.emit(SignalReading(-60.0))  # no fix yet → nothing to query
    await pipeline.join()
    assert feeds == []

    loc.emit(HOME)
    await pipeline.join()
    clock.advance(2)
    sig.emit(SignalReading(-72.0))
    await pipeline.join()

    assert len(feeds) == 2
    assert remote.calls == [HOME.coordinate, HOME.coordinate]

    clock.advance(2)
    sig.emit(SignalReading(-70.0))  # 2 dBm swing, ignored
    await pipeline.join()
    assert len(feeds) == 2
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_non_finite_signal_never_triggers(clock) -> None:
    pipeline, loc, sig, _, remote, feeds = _build(clock)
    await pipeline.start()
    loc.emit(HOME)
    await pipeline.join()
    clock.advance(2)
    sig.emit(SignalReading(-60.0))
    await pipeline.join()

    for _ in range(3):
        clock.advance(2)
        sig.emit(SignalReading(math.nan))
        await pipeline.join()

    assert len(feeds) == 2
    assert len(remote.calls) == 2
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_accepted_precise_fix_records_visit(clock) -> None:
    loc, sig = PushLocationSource(), PushSignalSource()
    visits = VisitLog()
    feeds: list = []
    pipeline = UpdatePipeline(
        loc,
        sig,
        FakeStore([make_record("l1", 4.0)]),
        FakeStore([make_record("r1", 4.5, lat=41.0)]),
        feeds.append,
        settings=PipelineSettings(),
        visits=visits,
        clock=clock,
    )
    await pipeline.start()

    loc.emit(HOME)
    await pipeline.join()

    assert pipeline.last_feed is feeds[-1]
    assert [v.record.id for v in visits.recent()] == ["l1"]

    clock.advance(2)
    loc.emit(LocationReading(Coordinate(40.5, -75.0), accuracy_m=50.0))
    await pipeline.join()
    assert len(feeds) == 2
    assert len(visits) == 1

    await pipeline.stop()
    assert pipeline.last_feed is None
    await pipeline.aclose()

@pytest.mark.asyncio
async def test_event_from_foreign_thread_is_delivered(clock) -> None:
    delivered = asyncio.Event()
    feeds: list = []

    def _on_feed(feed) -> None:
        feeds.append(feed)
        delivered.set()

    loc = PushLocationSource()
    pipeline = UpdatePipeline(
        loc,
        PushSignalSource(),
        FakeStore([make_record("l1", 4.0)]),
        FakeStore(),
        _on_feed,
        settings=PipelineSettings(),
        clock=clock,
    )
    await pipeline.start()

    await asyncio.to_thread(loc.emit, HOME)
    await asyncio.wait_for(delivered.wait(), timeout=2)

    assert len(feeds) == 1
    await pipeline.aclose()


# ── Stop while a cycle is in flight ───────────────────────────────────────


@pytest.mark.asyncio
async def test_stop_cancels_remote_and_discards_feed(clock) -> None:
    remote = FakeStore([make_record("r1", 5.0)])
    remote.gate = asyncio.Event()
    pipeline, loc, _, _, _, feeds = _build(clock, remote=remote)
    await pipeline.start()

    loc.emit(HOME)
    await _settle()
    await pipeline.stop()

    assert pipeline.status is PipelineStatus.IDLE
    assert feeds == []
    assert remote.calls == [HOME.coordinate]
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_stop_timeout_then_late_result_discarded(clock) -> None:
    local = FakeStore([make_record("l1", 4.0)])
    local.gate = asyncio.Event()
    pipeline, loc, _, _, _, feeds = _build(clock, local=local, stop_timeout_s=0.05)
    await pipeline.start()

    loc.emit(HOME)
    await _settle()
    await pipeline.stop()
    assert pipeline.status is PipelineStatus.IDLE

    local.gate.set()
    await asyncio.wait_for(pipeline.join(), timeout=2)
    assert feeds == []
    assert pipeline.guard.busy is False
    await pipeline.aclose()


def test_requires_a_subscriber(clock) -> None:
    with pytest.raises(ValueError):
        UpdatePipeline(PushLocationSource(), PushSignalSource(), FakeStore(), FakeStore(), clock=clock)
