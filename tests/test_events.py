"""Tests for the event service and the in-memory store."""

import pytest
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from helpers import RecordingListener, event_property, event_type, make_event, make_rule
from eventrules.core.config import EventsConfig
from eventrules.conditions.model import Item
from eventrules.events.service import EventService
from eventrules.storage.memory import MemoryStore


class ChangingListener(RecordingListener):
    async def on_event(self, event):
        await super().on_event(event)
        return True


class BrokenListener:
    def can_handle(self, event):
        return True

    async def on_event(self, event):
        raise RuntimeError("listener failed")


class ResendingListener:
    """Sends every event it receives back to the bus."""

    def __init__(self, bus):
        self.bus = bus
        self.received = 0

    def can_handle(self, event):
        return True

    async def on_event(self, event):
        self.received += 1
        return await self.bus.send(make_event(event.event_type))


class TestEventService:
    """Test event dispatch."""

    @pytest.fixture
    def store(self):
        return MemoryStore()

    @pytest.mark.asyncio
    async def test_dispatch_to_listeners(self, store):
        """Test events reach the listeners that can handle them."""
        service = EventService(store)
        views = RecordingListener({"view"})
        everything = RecordingListener()
        service.add_listener(views)
        service.add_listener(everything)

        await service.send(make_event("view"))
        await service.send(make_event("click"))

        assert [e.event_type for e in views.events] == ["view"]
        assert [e.event_type for e in everything.events] == ["view", "click"]

    @pytest.mark.asyncio
    async def test_changed_flag(self, store):
        """Test send reports whether any listener changed state."""
        service = EventService(store)
        service.add_listener(RecordingListener())

        assert await service.send(make_event("view")) is False

        service.add_listener(ChangingListener())
        assert await service.send(make_event("view")) is True

    @pytest.mark.asyncio
    async def test_listener_failure_isolated(self, store):
        """Test a failing listener does not stop dispatch."""
        service = EventService(store)
        listener = RecordingListener()
        service.add_listener(BrokenListener())
        service.add_listener(listener)

        await service.send(make_event("view"))

        assert len(listener.events) == 1

    @pytest.mark.asyncio
    async def test_remove_listener(self, store):
        """Test removed listeners no longer receive events."""
        service = EventService(store)
        listener = RecordingListener()
        service.add_listener(listener)
        service.remove_listener(listener)
        service.remove_listener(listener)

        await service.send(make_event("view"))

        assert listener.events == []

    @pytest.mark.asyncio
    async def test_only_persistent_events_recorded(self, store):
        """Test transient events are dispatched but not recorded."""
        service = EventService(store)

        await service.send(make_event("view"))
        await service.send(make_event("ruleFired", persistent=False))

        assert await store.count_events() == 1

    @pytest.mark.asyncio
    async def test_recording_disabled(self, store):
        """Test recording can be switched off."""
        service = EventService(store, EventsConfig(record_events=False))

        await service.send(make_event("view"))

        assert await store.count_events() == 0

    @pytest.mark.asyncio
    async def test_event_recorded_after_dispatch(self, store):
        """Test listeners do not see the event they are handling in the history."""
        service = EventService(store)
        seen = []

        class HistoryListener:
            def can_handle(self, event):
                return True

            async def on_event(self, event):
                seen.append(await service.has_event_already_been_raised(event, False))
                return False

        service.add_listener(HistoryListener())

        await service.send(make_event("view"))
        await service.send(make_event("view"))

        assert seen == [False, True]

    @pytest.mark.asyncio
    async def test_dispatch_depth_bounded(self, store):
        """Test re-entrant dispatch stops at the configured depth."""
        service = EventService(store, EventsConfig(max_dispatch_depth=5))
        listener = ResendingListener(service)
        service.add_listener(listener)

        assert await service.send(make_event("view")) is False
        assert listener.received == 5

    @pytest.mark.asyncio
    async def test_depth_resets_between_sends(self, store):
        """Test the depth only counts nested sends."""
        service = EventService(store, EventsConfig(max_dispatch_depth=1))
        listener = RecordingListener()
        service.add_listener(listener)

        await service.send(make_event("view"))
        await service.send(make_event("view"))

        assert len(listener.events) == 2


class TestMemoryStore:
    """Test the in-memory store."""

    @pytest.fixture
    def store(self):
        return MemoryStore()

    @pytest.mark.asyncio
    async def test_rules_are_snapshots(self, store):
        """Test callers get their own copy of stored rules."""
        await store.save_rule(make_rule("r1", event_type("view")))

        loaded = await store.load_rule("systemscope_r1")
        loaded.metadata.enabled = False
        loaded.condition.parameter_values["eventTypeId"] = "click"

        again = await store.load_rule("systemscope_r1")
        assert again.metadata.enabled is True
        assert again.condition.parameter_values["eventTypeId"] == "view"

    @pytest.mark.asyncio
    async def test_nested_values_are_snapshots(self, store):
        """Test list parameter values are not shared between reads."""
        await store.save_rule(make_rule("r1", event_property("properties.tag", ["a", "b"], op="in")))

        loaded = await store.load_rule("systemscope_r1")
        loaded.condition.parameter_values["propertyValue"].append("c")

        again = await store.load_rule("systemscope_r1")
        assert again.condition.parameter_values["propertyValue"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_query_rules(self, store):
        """Test querying rules by a metadata field."""
        flagged = make_rule("flagged", event_type("view"))
        flagged.metadata.missing_plugins = True
        await store.save_rule(flagged)
        await store.save_rule(make_rule("ok", event_type("view"), scope="site"))

        assert [r.metadata.id for r in await store.query_rules("missing_plugins", True)] == ["flagged"]
        assert [r.metadata.id for r in await store.query_rules("scope", "site")] == ["ok"]

    @pytest.mark.asyncio
    async def test_remove_rule(self, store):
        """Test removing a rule."""
        await store.save_rule(make_rule("r1", event_type("view")))

        assert await store.remove_rule("systemscope_r1") is True
        assert await store.remove_rule("systemscope_r1") is False
        assert await store.get_all_rules() == []

    @pytest.mark.asyncio
    async def test_event_history_per_profile(self, store):
        """Test raise-once lookups by profile."""
        await store.save_event(make_event("view"))

        assert await store.has_event_already_been_raised(make_event("view"), False) is True
        assert await store.has_event_already_been_raised(make_event("click"), False) is False

        other = make_event("view")
        other.profile.item_id = "profile-2"
        assert await store.has_event_already_been_raised(other, False) is False

    @pytest.mark.asyncio
    async def test_event_history_per_session(self, store):
        """Test raise-once lookups by session."""
        await store.save_event(make_event("view"))

        other_session = make_event("view")
        other_session.session.item_id = "session-2"

        assert await store.has_event_already_been_raised(make_event("view"), True) is True
        assert await store.has_event_already_been_raised(other_session, True) is False
        # Same profile, so the profile lookup still finds it
        assert await store.has_event_already_been_raised(other_session, False) is True

    @pytest.mark.asyncio
    async def test_event_history_compares_targets(self, store):
        """Test events with different targets are distinct."""
        await store.save_event(make_event("ruleFired", target=Item("site_a", "rule")))

        assert await store.has_event_already_been_raised(
            make_event("ruleFired", target=Item("site_a", "rule")), False
        ) is True
        assert await store.has_event_already_been_raised(
            make_event("ruleFired", target=Item("site_b", "rule")), False
        ) is False
        assert await store.has_event_already_been_raised(make_event("ruleFired"), False) is False
