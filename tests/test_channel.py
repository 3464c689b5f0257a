"""Tests for the bridge event channel."""

from __future__ import annotations

import asyncio
import logging

import pytest
from pydantic import TypeAdapter

from switchboard.session.channel import EventChannel
from switchboard.session.models import (
    BridgeEvent,
    ProcessEndedEvent,
    SessionStartedEvent,
    TurnCompletedEvent,
)


class TestPublish:
    def test_stamps_sequence_and_timestamp(self) -> None:
        channel = EventChannel()
        channel.publish(SessionStartedEvent(session_id="s1"))
        channel.publish(ProcessEndedEvent(exit_code=0))
        first, second = channel.drain()
        assert (first.seq, second.seq) == (0, 1)
        assert first.ts.endswith("Z")
        assert channel.published == 2

    def test_subscribers_see_events_in_order(self) -> None:
        channel = EventChannel()
        seen: list[str] = []
        channel.subscribe(lambda e: seen.append(e.type))
        channel.publish(SessionStartedEvent(session_id="s1"))
        channel.publish(TurnCompletedEvent())
        assert seen == ["session_started", "turn_completed"]

    def test_unsubscribe(self) -> None:
        channel = EventChannel()
        seen: list[str] = []
        unsubscribe = channel.subscribe(lambda e: seen.append(e.type))
        unsubscribe()
        unsubscribe()
        channel.publish(TurnCompletedEvent())
        assert seen == []

    def test_failing_subscriber_does_not_block_others(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        channel = EventChannel()
        seen: list[str] = []

        def _boom(event: object) -> None:
            raise RuntimeError("subscriber bug")

        channel.subscribe(_boom)
        channel.subscribe(lambda e: seen.append(e.type))
        with caplog.at_level(logging.ERROR):
            channel.publish(TurnCompletedEvent())
        assert seen == ["turn_completed"]
        assert len(channel.drain()) == 1
        assert "subscriber failed" in caplog.text


class TestConsume:
    async def test_get_waits_for_publish(self) -> None:
        channel = EventChannel()
        waiter = asyncio.ensure_future(channel.get())
        await asyncio.sleep(0)
        assert not waiter.done()
        channel.publish(ProcessEndedEvent(exit_code=1))
        event = await asyncio.wait_for(waiter, timeout=1.0)
        assert isinstance(event, ProcessEndedEvent)

    async def test_stream_ends_on_close(self) -> None:
        channel = EventChannel()
        channel.publish(SessionStartedEvent(session_id="s1"))
        channel.publish(TurnCompletedEvent())
        channel.close()
        types = [event.type async for event in channel.stream()]
        assert types == ["session_started", "turn_completed"]
        assert await channel.get() is None

    def test_publish_after_close_dropped(self) -> None:
        channel = EventChannel()
        channel.close()
        channel.close()
        channel.publish(TurnCompletedEvent())
        assert channel.drain() == []
        assert channel.published == 0
        assert channel.closed


class TestEventUnion:
    def test_validates_by_type_tag(self) -> None:
        adapter = TypeAdapter(BridgeEvent)
        event = adapter.validate_python({"type": "session_started", "session_id": "abc"})
        assert isinstance(event, SessionStartedEvent)

    def test_json_round_trip(self) -> None:
        adapter = TypeAdapter(BridgeEvent)
        original = TurnCompletedEvent(session_id="s", cost_usd=0.5, is_error=False)
        restored = adapter.validate_json(original.model_dump_json())
        assert restored == original
