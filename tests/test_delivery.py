"""
tests/test_delivery.py
~~~~~~~~~~~~~~~~~~~~~~
SerialDelivery keeps submission order and never overlaps callbacks.
"""

from __future__ import annotations

import asyncio

import pytest

from nearby_feed.delivery import SerialDelivery
from nearby_feed.models import Feed


@pytest.mark.asyncio
async def test_async_callback_serialized_in_order() -> None:
    seen: list[int] = []
    active = 0
    max_active = 0

    async def _on_feed(feed: Feed) -> None:
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        seen.append(feed.local_count)
        active -= 1

    delivery = SerialDelivery(_on_feed)
    feeds = [Feed(records=(), local_count=i) for i in range(5)]

    await asyncio.gather(*(delivery.deliver(f) for f in feeds))

    assert seen == [0, 1, 2, 3, 4]
    assert max_active == 1
    assert delivery.delivered == 5
    await delivery.aclose()


@pytest.mark.asyncio
async def test_sync_callback_supported() -> None:
    got: list[Feed] = []
    delivery = SerialDelivery(got.append)
    feed = Feed(records=())

    await delivery.deliver(feed)

    assert got == [feed]
    await delivery.aclose()


@pytest.mark.asyncio
async def test_subscriber_error_does_not_stop_delivery(caplog) -> None:
    calls = 0

    def _on_feed(feed: Feed) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("ui exploded")

    delivery = SerialDelivery(_on_feed)
    await delivery.deliver(Feed(records=()))
    await delivery.deliver(Feed(records=()))

    assert calls == 2
    assert delivery.delivered == 1
    assert "ui exploded" in caplog.text
    await delivery.aclose()


@pytest.mark.asyncio
async def test_aclose_without_deliveries() -> None:
    await SerialDelivery(lambda feed: None).aclose()


@pytest.mark.asyncio
async def test_deliver_after_aclose_starts_fresh_consumer() -> None:
    got: list[Feed] = []
    delivery = SerialDelivery(got.append)
    first, second = Feed(records=(), local_count=1), Feed(records=(), local_count=2)

    await delivery.deliver(first)
    await delivery.aclose()
    await delivery.deliver(second)

    assert got == [first, second]
    assert delivery.delivered == 2
    await delivery.aclose()
