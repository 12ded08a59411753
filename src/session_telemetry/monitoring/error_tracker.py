"""
Error Tracking

Captures uncaught errors, unhandled rejections and manually reported
failures, enriches each with device, browser, page, session and network
context plus the breadcrumb trail leading up to it, and keeps a bounded
recording of the session.
"""

import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import structlog

from session_telemetry.core.events import (
    ERROR_EVENT,
    INTERACTION_EVENTS,
    NAVIGATION_EVENT,
    UNHANDLED_REJECTION_EVENT,
    CallbackRegistry,
    ErrorEvent,
    EventBus,
    InteractionEvent,
    NavigationEvent,
    RejectionEvent,
    Unsubscribe,
)
from session_telemetry.core.logging import set_session_context
from session_telemetry.core.types import (
    DeviceInfo,
    NetworkMetrics,
    PerformanceReport,
    Severity,
    bytes_to_mb,
    detect_browser,
    generate_id,
)
from session_telemetry.host import PageInfo, Platform
from session_telemetry.monitoring.performance_monitor import PerformanceMonitor

logger = structlog.get_logger(__name__)


class ErrorType(str, Enum):
    """Origin of an error report."""
    JAVASCRIPT = "javascript"
    NETWORK = "network"
    RENDERING = "rendering"
    MEMORY = "memory"
    CRASH = "crash"
    UNHANDLED_REJECTION = "unhandled-rejection"


class BreadcrumbCategory(str, Enum):
    NAVIGATION = "navigation"
    USER_INTERACTION = "user-interaction"
    NETWORK = "network"
    CONSOLE = "console"
    ERROR = "error"


class BreadcrumbLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SessionEventType(str, Enum):
    CLICK = "click"
    SCROLL = "scroll"
    NAVIGATION = "navigation"
    ERROR = "error"
    PERFORMANCE = "performance"
    NETWORK = "network"


@dataclass(frozen=True)
class ErrorBreadcrumb:
    """Timestamped note describing recent activity."""

    timestamp: datetime
    category: BreadcrumbCategory
    message: str
    data: Optional[Dict[str, Any]] = None
    level: BreadcrumbLevel = BreadcrumbLevel.INFO


@dataclass(frozen=True)
class SessionEvent:
    """Entry in a session recording."""

    timestamp: datetime
    type: SessionEventType
    target: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionPerformance:
    """Aggregate counters kept on a session recording."""

    initial_load: float = 0.0
    interactions: int = 0
    memory_peaks: List[int] = field(default_factory=list)


@dataclass
class SessionRecording:
    """In-memory log of one session's events and errors."""

    session_id: str
    start_time: datetime
    events: Deque[SessionEvent]
    end_time: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)
    performance: SessionPerformance = field(default_factory=SessionPerformance)


@dataclass(frozen=True)
class BrowserInfo:
    name: str = "Unknown"
    version: str = "Unknown"
    engine: str = "Unknown"
    cookie_enabled: bool = False
    online: bool = False


@dataclass(frozen=True)
class PageContext:
    url: str = "unknown"
    referrer: str = ""
    title: str = ""
    load_time: float = 0.0
    user_agent: str = "unknown"


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    session_duration: float
    page_views: int
    interactions: int
    last_interaction: Optional[datetime] = None


@dataclass(frozen=True)
class MobileErrorReport:
    """An error enriched with the context it happened in."""

    id: str
    timestamp: datetime
    error_type: ErrorType
    message: str
    severity: Severity
    device_info: DeviceInfo
    browser_info: BrowserInfo
    page_context: PageContext
    session_info: SessionInfo
    breadcrumbs: List[ErrorBreadcrumb] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    network_info: Optional[NetworkMetrics] = None
    performance_metrics: Optional[PerformanceReport] = None
    extra: Dict[str, Any] = field(default_factory=dict)


# Context keys copied onto the report; anything else goes to ``extra``
_REPORT_CONTEXT_KEYS = ("filename", "lineno", "colno", "stack")

_CATEGORY_EVENT_TYPES = {
    BreadcrumbCategory.NAVIGATION: SessionEventType.NAVIGATION,
    BreadcrumbCategory.USER_INTERACTION: SessionEventType.CLICK,
    BreadcrumbCategory.NETWORK: SessionEventType.NAVIGATION,
    BreadcrumbCategory.CONSOLE: SessionEventType.NAVIGATION,
    BreadcrumbCategory.ERROR: SessionEventType.NAVIGATION,
}


def calculate_severity(message: str, error_type: ErrorType) -> Severity:
    """Grade an error from its type and message."""
    if error_type in (ErrorType.MEMORY, ErrorType.CRASH):
        return Severity.CRITICAL

    if error_type == ErrorType.NETWORK:
        return Severity.MEDIUM

    lowered = message.lower()
    if "out of memory" in lowered or "maximum call stack" in lowered:
        return Severity.CRITICAL
    if "network" in lowered or "fetch" in lowered:
        return Severity.MEDIUM

    return Severity.HIGH


class ErrorTracker:
    """
    Collects error reports and the session trail around them.

    Reporting methods never raise: a failure while building or delivering a
    report is logged and swallowed so emitters are never disrupted. Each
    subscriber is isolated from the others.
    """

    def __init__(self,
                 platform: Platform,
                 events: EventBus,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 max_breadcrumbs: int = 50,
                 max_session_events: int = 1000,
                 clock: Optional[Callable[[], datetime]] = None):
        self.platform = platform
        self.events = events
        self.performance_monitor = performance_monitor
        self.max_breadcrumbs = max_breadcrumbs
        self.max_session_events = max_session_events
        self._clock = clock or datetime.now

        self._error_reports: List[MobileErrorReport] = []
        self._breadcrumbs: Deque[ErrorBreadcrumb] = deque(maxlen=max_breadcrumbs)
        self._callbacks: CallbackRegistry[MobileErrorReport] = CallbackRegistry("error_report")
        self._subscriptions: List[Unsubscribe] = []
        self._is_tracking = False

        self._page_views = 0
        self._interactions = 0
        self._last_interaction: Optional[datetime] = None
        self._session_recording = self._start_session_recording()

    @property
    def is_tracking(self) -> bool:
        return self._is_tracking

    def start_tracking(self) -> None:
        """Attach global error, interaction and navigation handlers."""
        if self._is_tracking:
            return

        self._is_tracking = True
        self._setup_error_handlers()
        self._track_page_view()

        logger.info("Error tracking started",
                    session_id=self._session_recording.session_id)

    def stop_tracking(self) -> None:
        """Detach every handler and close the current recording."""
        if not self._is_tracking:
            return

        self._is_tracking = False
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._end_session_recording()

        logger.info("Error tracking stopped",
                    session_id=self._session_recording.session_id)

    def report_error(self,
                     error: Union[BaseException, str],
                     context: Optional[Dict[str, Any]] = None) -> None:
        """Report a caught error."""
        self._report(error, ErrorType.JAVASCRIPT, context)

    def report_network_error(self,
                             url: str,
                             status: int,
                             status_text: str,
                             context: Optional[Dict[str, Any]] = None) -> None:
        """Report a failed network request."""
        context = dict(context or {})
        context["tags"] = {
            "url": url,
            "status": str(status),
            "statusText": status_text,
            **(context.get("tags") or {}),
        }
        self._report(f"Network error: {status} {status_text} for {url}", ErrorType.NETWORK, context)

    def report_memory_error(self,
                            memory_usage: int,
                            context: Optional[Dict[str, Any]] = None) -> None:
        """Report heap usage that reached a critical level."""
        context = dict(context or {})
        context.setdefault("severity", Severity.CRITICAL)
        context["tags"] = {
            "memoryUsage": str(memory_usage),
            **(context.get("tags") or {}),
        }
        self._report(
            f"Memory usage critical: {bytes_to_mb(memory_usage)}MB", ErrorType.MEMORY, context
        )

    def add_breadcrumb(self,
                       category: Union[BreadcrumbCategory, str],
                       message: str,
                       data: Optional[Dict[str, Any]] = None,
                       level: Union[BreadcrumbLevel, str] = BreadcrumbLevel.INFO) -> ErrorBreadcrumb:
        """Append a breadcrumb, evicting the oldest once the buffer is full."""
        breadcrumb = ErrorBreadcrumb(
            timestamp=self._clock(),
            category=BreadcrumbCategory(category),
            message=message,
            data=data,
            level=BreadcrumbLevel(level),
        )
        self._breadcrumbs.append(breadcrumb)

        event_type = _CATEGORY_EVENT_TYPES[breadcrumb.category]
        if data and data.get("type") == SessionEventType.SCROLL.value:
            event_type = SessionEventType.SCROLL

        self._add_session_event(event_type, data={"breadcrumb": breadcrumb})
        return breadcrumb

    def on_error_report(self, callback: Callable[[MobileErrorReport], None]) -> Unsubscribe:
        """Subscribe to processed error reports."""
        return self._callbacks.add(callback)

    def get_session_recording(self) -> SessionRecording:
        return self._session_recording

    def get_session_errors(self) -> List[MobileErrorReport]:
        """Error reports that belong to the current session."""
        session_id = self._session_recording.session_id
        return [
            report for report in self._error_reports
            if report.session_info.session_id == session_id
        ]

    def get_breadcrumbs(self) -> List[ErrorBreadcrumb]:
        """Current breadcrumb trail, oldest first."""
        return list(self._breadcrumbs)

    def clear_session(self) -> None:
        """Discard errors and breadcrumbs and begin a new recording."""
        self._error_reports = []
        self._breadcrumbs.clear()
        self._end_session_recording()

        self._page_views = 0
        self._interactions = 0
        self._last_interaction = None
        self._session_recording = self._start_session_recording()

        logger.info("Error tracking session cleared",
                    session_id=self._session_recording.session_id)

    def process_error_report(self, report: MobileErrorReport) -> None:
        """Store a report, record it in the session, and notify subscribers."""
        self._error_reports.append(report)
        self._session_recording.errors.append(report.id)

        self._add_session_event(SessionEventType.ERROR, data={
            "errorId": report.id,
            "message": report.message,
            "severity": report.severity.value,
        })

        self.add_breadcrumb(
            BreadcrumbCategory.ERROR,
            f"{report.error_type.value}: {report.message}",
            data={"errorId": report.id, "severity": report.severity.value},
            level=BreadcrumbLevel.ERROR,
        )

        logger.warning("Error report tracked",
                       error_id=report.id,
                       error_type=report.error_type.value,
                       severity=report.severity.value,
                       message=report.message)

        self._callbacks.notify(report)

    def _report(self,
                error: Union[BaseException, str],
                error_type: ErrorType,
                context: Optional[Dict[str, Any]]) -> None:
        try:
            report = self._create_error_report(error, error_type, context)
            self.process_error_report(report)
        except Exception as e:
            logger.error("Failed to process error report",
                         error_type=error_type.value,
                         error=str(e))

    def _create_error_report(self,
                             error: Union[BaseException, str],
                             error_type: ErrorType,
                             context: Optional[Dict[str, Any]]) -> MobileErrorReport:
        context = dict(context or {})

        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = str(error)
            stack = None

        severity = self._resolve_severity(context.pop("severity", None), message, error_type)
        tags = {str(k): str(v) for k, v in (context.pop("tags", None) or {}).items()}
        known = {key: context.pop(key) for key in _REPORT_CONTEXT_KEYS if key in context}

        performance_snapshot = None
        if self.performance_monitor is not None:
            performance_snapshot = self.performance_monitor.get_current_performance_snapshot()
            self._record_memory_peak(performance_snapshot)

        return MobileErrorReport(
            id=generate_id("error"),
            timestamp=self._clock(),
            error_type=error_type,
            message=message,
            severity=severity,
            device_info=self._safe(self.platform.device_info, DeviceInfo()),
            browser_info=self._browser_info(),
            page_context=self._page_context(),
            session_info=self._session_info(),
            breadcrumbs=list(self._breadcrumbs),
            tags=tags,
            stack=known.get("stack", stack),
            filename=known.get("filename"),
            lineno=known.get("lineno"),
            colno=known.get("colno"),
            network_info=self._safe(self.platform.connection, None),
            performance_metrics=performance_snapshot,
            extra=context,
        )

    @staticmethod
    def _resolve_severity(override: Any, message: str, error_type: ErrorType) -> Severity:
        if override is not None:
            try:
                return Severity(override)
            except ValueError:
                logger.warning("Ignoring unknown severity override",
                               severity=str(override),
                               error_type=error_type.value)
        return calculate_severity(message, error_type)

    def _setup_error_handlers(self) -> None:
        subscribe = self.events.subscribe
        self._subscriptions.append(subscribe(ERROR_EVENT, self._handle_global_error))
        self._subscriptions.append(subscribe(UNHANDLED_REJECTION_EVENT, self._handle_unhandled_rejection))
        for event_name in INTERACTION_EVENTS:
            self._subscriptions.append(subscribe(event_name, self._handle_user_interaction))
        self._subscriptions.append(subscribe(NAVIGATION_EVENT, self._handle_navigation))

        if self.performance_monitor is not None:
            self._subscriptions.append(
                self.performance_monitor.on_performance_report(self._handle_performance_report)
            )

    def _handle_global_error(self, event: ErrorEvent) -> None:
        context = {
            "filename": event.filename,
            "lineno": event.lineno,
            "colno": event.colno,
            "severity": Severity.HIGH,
        }
        self._report(event.error if event.error is not None else event.message,
                     ErrorType.JAVASCRIPT, context)

    def _handle_unhandled_rejection(self, event: RejectionEvent) -> None:
        reason = event.reason
        error = reason if isinstance(reason, BaseException) else str(reason)
        self._report(error, ErrorType.UNHANDLED_REJECTION, {"severity": Severity.HIGH})

    def _handle_user_interaction(self, event: InteractionEvent) -> None:
        self._interactions += 1
        self._last_interaction = self._clock()
        self._session_recording.performance.interactions = self._interactions

        target = event.target or "unknown"
        self.add_breadcrumb(
            BreadcrumbCategory.USER_INTERACTION,
            f"User {event.type} on {target}",
            data={"type": event.type, "target": event.target},
            level=BreadcrumbLevel.INFO,
        )

    def _handle_navigation(self, event: NavigationEvent) -> None:
        self._track_page_view(event)

        self.add_breadcrumb(
            BreadcrumbCategory.NAVIGATION,
            f"Navigation to {event.path}",
            data={"url": event.url, "referrer": event.referrer},
            level=BreadcrumbLevel.INFO,
        )

    def _handle_performance_report(self, report: PerformanceReport) -> None:
        self._record_memory_peak(report)
        self._add_session_event(SessionEventType.PERFORMANCE, data={
            "reportId": report.id,
            "lcp": report.core_web_vitals.lcp,
            "usedHeap": report.memory_metrics.used_heap,
        })

    def _track_page_view(self, event: Optional[NavigationEvent] = None) -> None:
        self._page_views += 1

        page = self._safe(self.platform.page_info, PageInfo(url="unknown"))
        self._add_session_event(SessionEventType.NAVIGATION, data={
            "url": event.url if event else page.url,
            "title": page.title,
            "referrer": event.referrer if event else page.referrer,
        })

    def _record_memory_peak(self, report: PerformanceReport) -> None:
        used = report.memory_metrics.used_heap
        peaks = self._session_recording.performance.memory_peaks
        if used > 0 and (not peaks or used > peaks[-1]):
            peaks.append(used)

    def _start_session_recording(self) -> SessionRecording:
        recording = SessionRecording(
            session_id=generate_id("session"),
            start_time=self._clock(),
            events=deque(maxlen=self.max_session_events),
            performance=SessionPerformance(
                initial_load=self._safe(self.platform.now, 0.0),
            ),
        )
        set_session_context(recording.session_id)
        return recording

    def _end_session_recording(self) -> None:
        self._session_recording.end_time = self._clock()
        self._session_recording.performance.interactions = self._interactions

    def _add_session_event(self,
                           event_type: SessionEventType,
                           target: Optional[str] = None,
                           data: Optional[Dict[str, Any]] = None) -> None:
        self._session_recording.events.append(SessionEvent(
            timestamp=self._clock(),
            type=event_type,
            target=target,
            data=data or {},
        ))

    def _browser_info(self) -> BrowserInfo:
        device = self._safe(self.platform.device_info, DeviceInfo())
        name, version, engine = detect_browser(device.user_agent)
        return BrowserInfo(
            name=name,
            version=version,
            engine=engine,
            cookie_enabled=self._safe(self.platform.cookies_enabled, False),
            online=self._safe(self.platform.is_online, False),
        )

    def _page_context(self) -> PageContext:
        page = self._safe(self.platform.page_info, PageInfo(url="unknown"))
        device = self._safe(self.platform.device_info, DeviceInfo())
        return PageContext(
            url=page.url,
            referrer=page.referrer,
            title=page.title,
            load_time=self._safe(self.platform.now, 0.0),
            user_agent=device.user_agent,
        )

    def _session_info(self) -> SessionInfo:
        duration = (self._clock() - self._session_recording.start_time).total_seconds() * 1000
        return SessionInfo(
            session_id=self._session_recording.session_id,
            session_duration=duration,
            page_views=self._page_views,
            interactions=self._interactions,
            last_interaction=self._last_interaction,
        )

    def _safe(self, probe: Callable[[], Any], default: Any) -> Any:
        try:
            return probe()
        except Exception as e:
            logger.warning("Platform probe failed", error=str(e))
            return default
