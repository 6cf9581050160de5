"""Event bus for pipeline observability.

A simple synchronous event bus for emitting domain events from the engine
to CLI formatters, keeping presentation out of the convergence loop.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol satisfied by both EventBus and NullEventBus."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None: ...

    def emit(self, event: Any) -> None: ...


class EventBus:
    """Synchronous event bus.

    Handlers run in subscription order. Handler exceptions propagate to the
    emitter; formatters are our code, so bugs should surface immediately.

    Example:
        bus = EventBus()
        bus.subscribe(IterationCompleted, lambda e: print(e.rows_written))
        bus.emit(IterationCompleted(...))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: Any) -> None:
        # Events with no subscribers are ignored
        for handler in self._subscribers.get(type(event), []):
            handler(event)


class NullEventBus:
    """No-op event bus for library use where nothing is listening.

    Does NOT inherit from EventBus so it cannot be mistaken for one that
    delivers events.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: Any) -> None:
        pass
