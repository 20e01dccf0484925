"""Tests for the per-run event system."""

from __future__ import annotations

import dataclasses
from datetime import datetime

import pytest

from cloudgrow_cfd.core.events import Event, EventBus, EventType, event_key


class TestEventType:
    """Tests for EventType enum."""

    def test_lifecycle_events(self) -> None:
        """Run lifecycle events exist."""
        assert EventType.RUN_START.value == "run.start"
        assert EventType.RUN_ITERATION.value == "run.iteration"
        assert EventType.RUN_TIME_STEP.value == "run.time_step"
        assert EventType.RUN_CONVERGED.value == "run.converged"
        assert EventType.RUN_DIVERGED.value == "run.diverged"
        assert EventType.RUN_MAX_ITERATIONS.value == "run.max_iterations"
        assert EventType.RUN_CANCELLED.value == "run.cancelled"
        assert EventType.RUN_WARNING.value == "run.warning"

    def test_event_key(self) -> None:
        """Enum members and strings map to the same key."""
        assert event_key(EventType.RUN_START) == "run.start"
        assert event_key("layout.scored") == "layout.scored"


class TestEvent:
    """Tests for Event dataclass."""

    def test_creation(self) -> None:
        """Create event with all fields."""
        event = Event(
            EventType.RUN_START,
            source="room",
            message="Run 'room' started",
            data={"shape": [10, 5, 3]},
        )

        assert event.key == "run.start"
        assert event.source == "room"
        assert event.data == {"shape": [10, 5, 3]}
        assert isinstance(event.timestamp, datetime)

    def test_frozen(self) -> None:
        """Events cannot be altered by handlers."""
        event = Event(EventType.RUN_START)
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.source = "other"  # type: ignore[misc]

    def test_str(self) -> None:
        """String form names the type, source and message."""
        assert str(Event(EventType.RUN_CONVERGED, source="room", message="done")) == (
            "run.converged [room] done"
        )
        assert str(Event(EventType.RUN_START, source="room")) == "run.start [room]"

    def test_to_dict(self) -> None:
        """Serialises enum types to their string values."""
        data = Event(EventType.RUN_ITERATION, data={"residual": 0.1}).to_dict()

        assert data["event_type"] == "run.iteration"
        assert data["data"] == {"residual": 0.1}
        assert data["source"] == "solver"
        assert isinstance(data["timestamp"], str)


class TestEventBus:
    """Tests for EventBus."""

    def test_subscribe_and_emit(self) -> None:
        """Handlers receive events of their type only."""
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe(EventType.RUN_ITERATION, received.append)

        bus.emit_simple(EventType.RUN_ITERATION, source="room", residual=0.5)
        bus.emit_simple(EventType.RUN_START, source="room")

        assert len(received) == 1
        assert received[0].data["residual"] == 0.5

    def test_subscribe_to_everything(self) -> None:
        """A None event type receives every event."""
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe(None, received.append)

        bus.emit_simple(EventType.RUN_START, source="room")
        bus.emit_simple(EventType.RUN_CONVERGED, source="room")

        assert [e.event_type for e in received] == [
            EventType.RUN_START,
            EventType.RUN_CONVERGED,
        ]

    def test_string_and_enum_keys_match(self) -> None:
        """Subscribing with the string value matches enum emissions."""
        bus = EventBus()
        received: list[Event] = []
        bus.subscribe("run.warning", received.append)

        bus.emit_simple(EventType.RUN_WARNING, source="room", message="skipped")

        assert len(received) == 1

    def test_duplicate_subscription_ignored(self) -> None:
        """The same handler is only called once per event."""
        bus = EventBus()
        calls: list[Event] = []
        bus.subscribe(EventType.RUN_START, calls.append)
        bus.subscribe(EventType.RUN_START, calls.append)

        bus.emit_simple(EventType.RUN_START, source="room")

        assert len(calls) == 1

    def test_unsubscribe(self) -> None:
        """The returned callable removes the subscription."""
        bus = EventBus()
        calls: list[Event] = []
        stop = bus.subscribe(EventType.RUN_START, calls.append)

        stop()
        stop()
        bus.emit_simple(EventType.RUN_START, source="room")

        assert calls == []

    def test_handler_exception_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing handler does not stop the others."""
        bus = EventBus()
        calls: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("boom")

        bus.subscribe(EventType.RUN_START, broken)
        bus.subscribe(EventType.RUN_START, calls.append)

        with caplog.at_level("ERROR"):
            bus.emit_simple(EventType.RUN_START, source="room")

        assert len(calls) == 1
        assert "broken" in caplog.text

    def test_history_bounded(self) -> None:
        """History keeps the most recent events only."""
        bus = EventBus(max_history=3)
        for i in range(5):
            bus.emit_simple(EventType.RUN_ITERATION, source="room", iteration=i)

        assert [e.data["iteration"] for e in bus.get_history()] == [2, 3, 4]

    def test_history_filters(self) -> None:
        """History can be filtered by type, source and limit."""
        bus = EventBus()
        bus.emit_simple(EventType.RUN_START, source="a")
        bus.emit_simple(EventType.RUN_ITERATION, source="a", iteration=1)
        bus.emit_simple(EventType.RUN_ITERATION, source="b", iteration=1)
        bus.emit_simple(EventType.RUN_ITERATION, source="b", iteration=2)

        assert len(bus.get_history(EventType.RUN_ITERATION)) == 3
        assert len(bus.get_history(source="b")) == 2
        (last,) = bus.get_history(EventType.RUN_ITERATION, limit=1)
        assert last.source == "b"
        assert last.data["iteration"] == 2

    def test_clear(self) -> None:
        """clear removes both history and handlers."""
        bus = EventBus()
        calls: list[Event] = []
        bus.subscribe(EventType.RUN_START, calls.append)
        bus.emit_simple(EventType.RUN_START, source="room")

        bus.clear()
        bus.emit_simple(EventType.RUN_START, source="room")

        assert len(calls) == 1
        assert len(bus.get_history()) == 1

    def test_buses_are_independent(self) -> None:
        """Two buses never see each other's events."""
        first, second = EventBus(), EventBus()
        seen: list[Event] = []
        second.subscribe(None, seen.append)

        first.emit_simple(EventType.RUN_START, source="room")

        assert seen == []
