"""Run events: progress, warnings and terminal states.

Each simulation run owns its own :class:`EventBus`; there is no process-wide
bus, so concurrent runs never see each other's events. The solver loop only
emits :class:`Event` records between iterations. Progress bars, residual
plots and telemetry live on the subscriber side.

Usage:
    bus = EventBus()
    stop = bus.subscribe(EventType.RUN_ITERATION, lambda e: print(e.data["residual"]))
    run = SimulationRun(grid, boundaries, event_bus=bus)
    run.run()
    stop()
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types emitted by a simulation run."""

    RUN_START = "run.start"
    RUN_ITERATION = "run.iteration"
    RUN_TIME_STEP = "run.time_step"
    RUN_CONVERGED = "run.converged"
    RUN_DIVERGED = "run.diverged"
    RUN_MAX_ITERATIONS = "run.max_iterations"
    RUN_CANCELLED = "run.cancelled"
    RUN_WARNING = "run.warning"

    # Anything a caller emits on its own bus
    CUSTOM = "custom"


def event_key(event_type: EventType | str) -> str:
    """String key of an event type (enum members and plain strings alike)."""
    return event_type.value if isinstance(event_type, EventType) else event_type


@dataclass(frozen=True)
class Event:
    """One notification from a run.

    Attributes:
        event_type: What happened.
        source: Name of the emitting run.
        message: Human-readable summary, may be empty.
        data: Payload (iteration number, residuals, status, ...).
        timestamp: Wall-clock time of emission (UTC).
    """

    event_type: EventType | str
    source: str = "solver"
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> str:
        """String form of the event type."""
        return event_key(self.event_type)

    def __str__(self) -> str:
        text = f"{self.key} [{self.source}]"
        return f"{text} {self.message}" if self.message else text

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "event_type": self.key,
            "source": self.source,
            "message": self.message,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous pub/sub scoped to one simulation run.

    Handlers run inline in the solver loop, so they should be quick. A
    handler that raises is logged and skipped; it never aborts the solve.
    """

    def __init__(self, *, max_history: int = 1000) -> None:
        """Create an empty bus.

        Args:
            max_history: Number of most recent events kept for inspection.
        """
        # None collects handlers that want every event
        self._handlers: dict[str | None, list[EventHandler]] = {}
        self._history: deque[Event] = deque(maxlen=max_history)

    def subscribe(
        self,
        event_type: EventType | str | None,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Register ``handler`` for one event type, or for all with None.

        Subscribing the same handler twice to the same type has no effect.

        Returns:
            A callable that removes the subscription.
        """
        key = None if event_type is None else event_key(event_type)
        handlers = self._handlers.setdefault(key, [])
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: Event) -> None:
        """Record ``event`` and deliver it to its subscribers."""
        self._history.append(event)
        targets = [*self._handlers.get(event.key, ()), *self._handlers.get(None, ())]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed on %s from '%s'",
                    getattr(handler, "__name__", repr(handler)),
                    event.key,
                    event.source,
                )

    def emit_simple(
        self,
        event_type: EventType | str,
        source: str,
        message: str = "",
        **data: Any,
    ) -> Event:
        """Build an event from keyword data, emit it and return it."""
        event = Event(event_type, source=source, message=message, data=data)
        self.emit(event)
        return event

    def get_history(
        self,
        event_type: EventType | str | None = None,
        source: str | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Recorded events, oldest first.

        Args:
            event_type: Keep only this type.
            source: Keep only events from this run.
            limit: Keep only the most recent ``limit`` matches.
        """
        key = None if event_type is None else event_key(event_type)
        events = [
            e
            for e in self._history
            if (key is None or e.key == key) and (source is None or e.source == source)
        ]
        return events if limit is None else events[-limit:]

    def clear(self) -> None:
        """Drop the history and every subscription."""
        self._history.clear()
        self._handlers.clear()
