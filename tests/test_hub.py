"""Tests for the status hub and the messages it carries."""

from __future__ import annotations

import asyncio

import pytest

from backend.events.hub import StatusHub
from backend.events.messages import (
    CrawlStatusMessage,
    UrlUpdateMessage,
    crawl_status,
    parse_message,
    to_wire,
)


def _drain(subscriber) -> list:
    messages = []
    while subscriber.pending():
        messages.append(subscriber.get_nowait())
    return messages


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TestMessages:
    def test_wire_format_without_error(self) -> None:
        assert to_wire(crawl_status(42, "running")) == {
            "type": "crawl_status",
            "payload": {"url_id": 42, "status": "running"},
        }

    def test_wire_format_with_error(self) -> None:
        wire = to_wire(crawl_status(7, "failed", error="connection refused"))
        assert wire["payload"] == {"url_id": 7, "status": "failed", "error": "connection refused"}

    def test_string_job_ids_are_kept(self) -> None:
        assert crawl_status("42", "completed").payload.url_id == "42"

    def test_parse_dispatches_on_type(self) -> None:
        message = parse_message(
            {"type": "url_update", "payload": {"url_id": 1, "url": "https://a.b/", "status": "pending"}}
        )
        assert isinstance(message, UrlUpdateMessage)
        assert message.payload.url == "https://a.b/"

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError):
            crawl_status(1, "exploded")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------

class TestStatusHub:
    def test_publish_order_and_late_subscriber(self) -> None:
        hub = StatusHub()
        early = hub.subscribe()

        hub.publish(crawl_status("42", "running"))
        late = hub.subscribe()
        hub.publish(crawl_status("42", "completed"))

        early_msgs = _drain(early)
        assert [m.payload.status for m in early_msgs] == ["running", "completed"]
        assert all(m.payload.url_id == "42" for m in early_msgs)
        assert all(isinstance(m, CrawlStatusMessage) for m in early_msgs)

        late_msgs = _drain(late)
        assert [m.payload.status for m in late_msgs] == ["completed"]

    def test_publish_without_subscribers_is_noop(self) -> None:
        StatusHub().publish(crawl_status(1, "running"))

    def test_failing_subscriber_does_not_block_others(self) -> None:
        hub = StatusHub()
        first = hub.subscribe()
        broken = hub.subscribe()
        last = hub.subscribe()

        def _explode(message) -> None:
            raise ConnectionResetError("socket gone")

        broken.deliver = _explode  # type: ignore[method-assign]

        hub.publish(crawl_status(1, "running"))

        assert len(_drain(first)) == 1
        assert len(_drain(last)) == 1
        assert len(hub) == 2
        assert broken.closed

        # The evicted subscriber is not tried again.
        hub.publish(crawl_status(1, "completed"))
        assert len(_drain(first)) == 1

    def test_full_queue_evicts_subscriber(self) -> None:
        hub = StatusHub(queue_size=1)
        slow = hub.subscribe()
        fast = hub.subscribe()

        hub.publish(crawl_status(1, "running"))
        _drain(fast)
        hub.publish(crawl_status(1, "completed"))

        assert len(hub) == 1
        assert slow.closed
        assert [m.payload.status for m in _drain(fast)] == ["completed"]

    def test_unsubscribe_ends_iteration(self) -> None:
        hub = StatusHub()
        subscriber = hub.subscribe()

        async def _consume() -> list:
            received = []
            async for message in subscriber:
                received.append(message.payload.status)
            return received

        async def _go() -> list:
            consumer = asyncio.create_task(_consume())
            hub.publish(crawl_status(1, "running"))
            hub.publish(crawl_status(1, "completed"))
            await asyncio.sleep(0)
            hub.unsubscribe(subscriber)
            return await asyncio.wait_for(consumer, 1)

        assert asyncio.run(_go()) == ["running", "completed"]
        assert len(hub) == 0

    def test_unsubscribe_unknown_is_ignored(self) -> None:
        hub = StatusHub()
        other = StatusHub().subscribe()
        hub.unsubscribe(other)
        assert len(hub) == 0

    def test_close_disconnects_everyone(self) -> None:
        hub = StatusHub()
        subscribers = [hub.subscribe() for _ in range(3)]
        hub.close()
        assert len(hub) == 0
        assert all(s.closed for s in subscribers)
        assert asyncio.run(subscribers[0].get()) is None
