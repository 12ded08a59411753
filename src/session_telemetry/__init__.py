"""
Session Telemetry

Client-side performance monitoring, error tracking with session recording,
and an analytics dashboard with alerting and A/B testing, for long-running
Python hosts.
"""

__version__ = "0.1.0"
__description__ = "Session performance monitoring, error tracking and analytics"

from session_telemetry.app import TelemetryApp
from session_telemetry.config.settings import TelemetrySettings, get_settings
from session_telemetry.core.logging import get_logger, setup_logging

__all__ = [
    "__version__",
    "__description__",
    "TelemetryApp",
    "TelemetrySettings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
