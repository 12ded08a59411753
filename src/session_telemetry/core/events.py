"""
Event-source capability and subscriber registries.

Collectors never bind to process or host globals directly. They subscribe to
named events on an ``EventBus`` and the host (or a test) emits into it. The
same module provides ``CallbackRegistry``, the per-callback isolated fan-out
used by every ``on_*`` subscription method in the pipeline.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import structlog

from session_telemetry.core.logging import get_telemetry_logger

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


# Event names emitted by the host
ERROR_EVENT = "error"
UNHANDLED_REJECTION_EVENT = "unhandledrejection"
CLICK_EVENT = "click"
SCROLL_EVENT = "scroll"
KEYDOWN_EVENT = "keydown"
NAVIGATION_EVENT = "popstate"
PERFORMANCE_ENTRY_EVENT = "performance-entry"
CONNECTION_CHANGE_EVENT = "connection-change"

INTERACTION_EVENTS = (CLICK_EVENT, SCROLL_EVENT, KEYDOWN_EVENT)


@dataclass
class ErrorEvent:
    """An uncaught error surfaced by the host."""

    message: str
    error: Optional[BaseException] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None


@dataclass
class RejectionEvent:
    """An unhandled rejection; ``reason`` may be any object."""

    reason: Any


@dataclass
class InteractionEvent:
    """A user interaction (click, scroll, keydown)."""

    type: str
    target: Optional[str] = None


@dataclass
class NavigationEvent:
    """A history navigation within the page."""

    url: str
    path: str = "/"
    referrer: str = ""


@dataclass
class PerformanceEntry:
    """
    A single performance timeline entry.

    Mirrors the fields the monitor reads from paint, largest-contentful-paint,
    first-input and layout-shift entries. Times are milliseconds since
    navigation start.
    """

    entry_type: str
    name: str = ""
    start_time: float = 0.0
    duration: float = 0.0
    processing_start: Optional[float] = None
    value: float = 0.0
    had_recent_input: bool = False


@dataclass
class ConnectionChangeEvent:
    """Network connection information changed."""

    connection_type: str = "unknown"
    metadata: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    In-process event source.

    Handlers run synchronously inside ``emit`` in subscription order. A
    handler that raises is logged and skipped; the remaining handlers still
    receive the event.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event: str, handler: Callable[[Any], None]) -> Unsubscribe:
        """Register ``handler`` for ``event`` and return its unsubscribe callable."""
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every handler of ``event``; returns the handler count."""
        handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.error("Event handler failed", event_name=event, error=str(e))
        return len(handlers)

    def handler_count(self, event: str) -> int:
        """Number of handlers currently subscribed to ``event``."""
        return len(self._handlers.get(event, []))


class CallbackRegistry(Generic[T]):
    """Ordered subscriber list with per-callback exception isolation."""

    def __init__(self, channel: str):
        self.channel = channel
        self._callbacks: List[Callable[[T], None]] = []
        self._telemetry_logger = get_telemetry_logger(__name__)

    def add(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Register a callback; the returned callable removes it again."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, item: T) -> None:
        """Invoke every callback with ``item``, logging any that raise."""
        for callback in list(self._callbacks):
            try:
                callback(item)
            except Exception as e:
                self._telemetry_logger.log_callback_failure(self.channel, e)

    def __len__(self) -> int:
        return len(self._callbacks)
