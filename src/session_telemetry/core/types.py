"""
Value types shared by the collectors and the dashboard.

Performance reports are immutable snapshots; everything here is plain data.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


MOBILE_USER_AGENT = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini",
    re.IGNORECASE,
)


class Severity(str, Enum):
    """Severity levels for error reports and alerts."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MemoryPressure(str, Enum):
    """Coarse classification of heap usage against the monitor's thresholds."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class DeviceInfo:
    """Device and user-agent context."""

    user_agent: str = "unknown"
    viewport: Tuple[int, int] = (0, 0)
    device_memory: Optional[float] = None
    hardware_concurrency: Optional[int] = None
    platform: str = "unknown"
    language: str = "unknown"

    @property
    def is_mobile(self) -> bool:
        return bool(MOBILE_USER_AGENT.search(self.user_agent))


@dataclass(frozen=True)
class CoreWebVitals:
    """Core Web Vitals in milliseconds (CLS is unitless)."""

    lcp: float = 0.0
    fid: float = 0.0
    cls: float = 0.0
    fcp: float = 0.0
    tti: float = 0.0
    tbt: float = 0.0


@dataclass(frozen=True)
class MemoryMetrics:
    """Heap usage in bytes."""

    used_heap: int = 0
    total_heap: int = 0
    heap_limit: int = 0
    pressure: MemoryPressure = MemoryPressure.LOW


@dataclass(frozen=True)
class NetworkMetrics:
    """Network information; ``unknown``/zero when the platform has none."""

    connection_type: str = "unknown"
    effective_type: str = "unknown"
    downlink: float = 0.0
    rtt: float = 0.0
    save_data: bool = False


@dataclass(frozen=True)
class PerformanceReport:
    """Point-in-time performance snapshot."""

    id: str
    timestamp: datetime
    session_id: str
    page_url: str
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    core_web_vitals: CoreWebVitals = field(default_factory=CoreWebVitals)
    memory_metrics: MemoryMetrics = field(default_factory=MemoryMetrics)
    network_metrics: NetworkMetrics = field(default_factory=NetworkMetrics)


def bytes_to_mb(value: float) -> int:
    """Round a byte count to whole megabytes, halves rounding up."""
    return int(value / 1024 / 1024 + 0.5)


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique identifier."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def detect_browser(user_agent: str) -> Tuple[str, str, str]:
    """Return ``(name, version, engine)`` parsed from a user agent string."""
    if "Chrome" in user_agent:
        match = re.search(r"Chrome/([0-9.]+)", user_agent)
        return "Chrome", match.group(1) if match else "Unknown", "Blink"
    if "Safari" in user_agent:
        match = re.search(r"Version/([0-9.]+)", user_agent)
        return "Safari", match.group(1) if match else "Unknown", "WebKit"
    if "Firefox" in user_agent:
        match = re.search(r"Firefox/([0-9.]+)", user_agent)
        return "Firefox", match.group(1) if match else "Unknown", "Gecko"
    if "Edge" in user_agent:
        match = re.search(r"Edge/([0-9.]+)", user_agent)
        return "Edge", match.group(1) if match else "Unknown", "EdgeHTML"
    return "Unknown", "Unknown", "Unknown"
