"""
Event bus delivery semantics
"""

import asyncio
import logging

import pytest

from pmo_financial.events import EventBus, create_event_bus


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_typed_and_wildcard_subscribers(self):
        bus = EventBus(source="tests")
        typed, everything = [], []
        bus.subscribe("budget_created", typed.append)
        bus.subscribe("*", everything.append)

        event = await bus.publish("budget_created", {"budget_id": "BUD-001"}, program_id="PRG-001", user_id="alice")
        await bus.publish("budget_closed", {"budget_id": "BUD-001"})

        assert typed == [event]
        assert [e.event_type for e in everything] == ["budget_created", "budget_closed"]
        assert event.source == "tests"
        assert event.to_dict()["program_id"] == "PRG-001"
        assert event.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_filter(self):
        bus = EventBus()
        received = []
        bus.subscribe("*", received.append, filter=lambda event: event.program_id == "PRG-002")

        await bus.publish("budget_created", {}, program_id="PRG-001")
        await bus.publish("budget_created", {}, program_id="PRG-002")

        assert [e.program_id for e in received] == ["PRG-002"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        subscription_id = bus.subscribe("*", received.append)

        assert bus.unsubscribe(subscription_id) is True
        assert bus.unsubscribe(subscription_id) is False
        await bus.publish("budget_created", {})
        assert received == []
        assert bus.subscription_count == 0


class TestDelivery:
    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("*", broken)
        bus.subscribe("*", received.append)

        with caplog.at_level(logging.ERROR, logger="pmo_financial.events"):
            await bus.publish("budget_created", {})

        assert len(received) == 1
        assert "failed for budget_created" in caplog.text

    @pytest.mark.asyncio
    async def test_async_handlers_are_drained(self):
        bus = EventBus()
        received = []

        async def slow(event):
            await asyncio.sleep(0.01)
            received.append(event.event_type)

        async def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("*", slow)
        bus.subscribe("*", broken)
        await bus.publish("snapshot_created", {})
        assert received == []

        await bus.drain()
        assert received == ["snapshot_created"]

    @pytest.mark.asyncio
    async def test_close_drops_subscribers(self):
        bus = EventBus()
        bus.subscribe("*", lambda event: None)
        await bus.close()
        assert bus.subscription_count == 0


def test_create_event_bus():
    assert create_event_bus(source="worker").source == "worker"
    with pytest.raises(ValueError, match="Unknown event bus backend"):
        create_event_bus("kafka")
