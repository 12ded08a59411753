"""
Core exception classes for the session telemetry pipeline.

Reporting paths never let these escape to emitters; they are raised from
configuration and experiment-definition entry points only.
"""


class SessionTelemetryError(Exception):
    """Base exception for all session telemetry errors."""
    pass


class ConfigurationError(SessionTelemetryError):
    """Raised when a dashboard or collector configuration is invalid."""
    pass


class ValidationError(SessionTelemetryError):
    """Raised when an A/B test definition fails validation."""
    pass
