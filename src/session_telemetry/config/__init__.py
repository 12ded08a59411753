"""Configuration for the telemetry pipeline."""

from .settings import MB, TelemetrySettings, get_settings, load_settings

__all__ = ["MB", "TelemetrySettings", "get_settings", "load_settings"]
