"""
Platform instrumentation for the collectors.

``Platform`` is the read-side capability the collectors sample: heap usage,
network information, navigation timing, long tasks and device context. Any
of these may be missing, in which case the probe returns ``None`` (or an
empty list) and the collectors fall back to their documented defaults.

``HostPlatform`` implements it for the running Python process using psutil.
``bind_process_hooks`` routes the process's real error surfaces into an
``EventBus`` so the error tracker sees uncaught exceptions and unobserved
task failures without binding to them itself.
"""

import asyncio
import locale
import platform as platform_module
import shutil
import sys
import time
import traceback
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Sequence

import psutil
import structlog

from session_telemetry.core.events import (
    ERROR_EVENT,
    UNHANDLED_REJECTION_EVENT,
    ErrorEvent,
    EventBus,
    RejectionEvent,
    Unsubscribe,
)
from session_telemetry.core.types import DeviceInfo, NetworkMetrics

logger = structlog.get_logger(__name__)

ALL_ENTRY_TYPES = (
    "paint",
    "largest-contentful-paint",
    "first-input",
    "layout-shift",
)


@dataclass(frozen=True)
class HeapSample:
    """Heap usage in bytes."""

    used: int
    total: int
    limit: int


@dataclass(frozen=True)
class NavigationTiming:
    """Navigation milestones in milliseconds on the platform clock."""

    navigation_start: float
    dom_interactive: float


@dataclass(frozen=True)
class PageInfo:
    """Identity of the page being instrumented."""

    url: str
    referrer: str = ""
    title: str = ""


class Platform(Protocol):
    """Instrumentation probes the collectors read from."""

    supports_performance_observer: bool

    def supported_entry_types(self) -> Sequence[str]:
        ...

    def memory(self) -> Optional[HeapSample]:
        ...

    def connection(self) -> Optional[NetworkMetrics]:
        ...

    def navigation_timing(self) -> Optional[NavigationTiming]:
        ...

    def long_tasks(self) -> List[float]:
        ...

    def device_info(self) -> DeviceInfo:
        ...

    def page_info(self) -> PageInfo:
        ...

    def now(self) -> float:
        ...

    def is_online(self) -> bool:
        ...

    def cookies_enabled(self) -> bool:
        ...


class HostPlatform:
    """
    Platform probes for the current Python process.

    Heap figures come from the process's resident and virtual memory, the
    limit from total system memory. The connection is the first interface
    that is up and is not loopback. Time-to-interactive is measured from
    process start to ``mark_interactive()``; long tasks are whatever the host
    reports through ``record_long_task()``.
    """

    supports_performance_observer = True

    def __init__(self,
                 page_url: str = "app://session-telemetry/",
                 page_title: str = "",
                 referrer: str = "",
                 max_long_tasks: int = 200):
        self._page = PageInfo(url=page_url, referrer=referrer, title=page_title)
        self._process = psutil.Process()
        self._start_time = self._process.create_time()
        self._interactive_at: Optional[float] = None
        self._long_tasks: Deque[float] = deque(maxlen=max_long_tasks)

    def supported_entry_types(self) -> Sequence[str]:
        return ALL_ENTRY_TYPES

    def memory(self) -> Optional[HeapSample]:
        info = self._process.memory_info()
        return HeapSample(
            used=info.rss,
            total=info.vms,
            limit=psutil.virtual_memory().total,
        )

    def connection(self) -> Optional[NetworkMetrics]:
        for name, stats in psutil.net_if_stats().items():
            if not stats.isup or name.startswith("lo"):
                continue

            connection_type = "wifi" if name.lower().startswith(("wl", "wi-fi")) else "ethernet"
            return NetworkMetrics(
                connection_type=connection_type,
                effective_type="unknown",
                downlink=float(stats.speed or 0),
                rtt=0.0,
                save_data=False,
            )
        return None

    def navigation_timing(self) -> Optional[NavigationTiming]:
        if self._interactive_at is None:
            return None
        return NavigationTiming(navigation_start=0.0, dom_interactive=self._interactive_at)

    def long_tasks(self) -> List[float]:
        return list(self._long_tasks)

    def device_info(self) -> DeviceInfo:
        terminal = shutil.get_terminal_size()
        language = locale.getlocale()[0] or "unknown"
        return DeviceInfo(
            user_agent=(
                f"Python/{platform_module.python_version()} "
                f"({platform_module.system()} {platform_module.release()}; {platform_module.machine()})"
            ),
            viewport=(terminal.columns, terminal.lines),
            device_memory=round(psutil.virtual_memory().total / (1024 ** 3), 1),
            hardware_concurrency=psutil.cpu_count(),
            platform=sys.platform,
            language=language,
        )

    def page_info(self) -> PageInfo:
        return self._page

    def now(self) -> float:
        return (time.time() - self._start_time) * 1000

    def is_online(self) -> bool:
        return self.connection() is not None

    def cookies_enabled(self) -> bool:
        return False

    def mark_interactive(self) -> None:
        """Record the moment the host became interactive."""
        if self._interactive_at is None:
            self._interactive_at = self.now()

    def record_long_task(self, duration_ms: float) -> None:
        """Record a main-loop task that blocked for ``duration_ms``."""
        self._long_tasks.append(duration_ms)


def bind_process_hooks(events: EventBus,
                       loop: Optional[asyncio.AbstractEventLoop] = None) -> Unsubscribe:
    """
    Route uncaught exceptions and unobserved task failures into ``events``.

    ``sys.excepthook`` emits an ``error`` event; the loop's exception handler
    emits ``unhandledrejection``. Previous handlers keep running afterwards.
    Returns a callable restoring both.
    """
    previous_excepthook = sys.excepthook

    def excepthook(exc_type, exc_value, exc_tb) -> None:
        filename = None
        lineno = None
        if exc_tb is not None:
            frame = traceback.extract_tb(exc_tb)[-1]
            filename, lineno = frame.filename, frame.lineno

        events.emit(ERROR_EVENT, ErrorEvent(
            message=str(exc_value),
            error=exc_value,
            filename=filename,
            lineno=lineno,
        ))
        previous_excepthook(exc_type, exc_value, exc_tb)

    sys.excepthook = excepthook

    previous_loop_handler: Optional[Callable[..., Any]] = None
    if loop is not None:
        previous_loop_handler = loop.get_exception_handler()

        def loop_exception_handler(event_loop: asyncio.AbstractEventLoop,
                                   context: Dict[str, Any]) -> None:
            reason = context.get("exception") or context.get("message", "unknown")
            events.emit(UNHANDLED_REJECTION_EVENT, RejectionEvent(reason=reason))

            if previous_loop_handler is not None:
                previous_loop_handler(event_loop, context)
            else:
                event_loop.default_exception_handler(context)

        loop.set_exception_handler(loop_exception_handler)

    logger.debug("Process hooks bound", loop_bound=loop is not None)

    def unbind() -> None:
        sys.excepthook = previous_excepthook
        if loop is not None:
            loop.set_exception_handler(previous_loop_handler)
        logger.debug("Process hooks unbound")

    return unbind
