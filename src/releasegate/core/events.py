"""Event bus for run observability.

A simple synchronous event bus carrying domain events (StageEntered,
StageResolved, RunFinished) from the orchestrator to CLI formatters.
"""

import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol satisfied by both EventBus and NullEventBus."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Synchronous event bus.

    Handlers run in the emitting thread (a run's thread) in subscription
    order. Handler exceptions propagate to the emitter.

    Example:
        bus = EventBus()
        bus.subscribe(StageEntered, lambda e: print(f"[{e.stage_key}] entered"))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers.

        Events with no subscribers are ignored.
        """
        with self._lock:
            handlers = list(self._subscribers.get(type(event), []))
        for handler in handlers:
            handler(event)


class NullEventBus:
    """No-op event bus for library use where nothing observes runs.

    Does NOT inherit from EventBus: subscribing here is a no-op, and
    inheritance would hide that from anyone expecting callbacks.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: T) -> None:
        pass
