"""
Configuration management with environment validation.

Settings are loaded from ``SESSION_TELEMETRY_*`` environment variables (or a
``.env`` file) through pydantic-settings and cached for the lifetime of the
process.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MB = 1024 * 1024


class TelemetrySettings(BaseSettings):
    """Application settings for the telemetry pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_TELEMETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    # Environment Configuration
    environment: str = Field("development", description="development, testing, staging or production")
    log_level: str = Field("INFO")
    page_url: str = Field("app://session-telemetry/")

    # Collector Configuration
    memory_sample_interval: float = Field(5.0, gt=0, description="Seconds between memory samples")
    max_breadcrumbs: int = Field(50, ge=1)
    max_session_events: int = Field(1000, ge=1)

    # Dashboard Configuration
    refresh_interval: float = Field(30.0, gt=0, description="Seconds between metric collections")
    retention_period_days: int = Field(30, ge=0)
    enable_real_time_alerts: bool = Field(True)

    # Alert thresholds
    lcp_warning_ms: float = Field(2500.0, ge=0)
    lcp_critical_ms: float = Field(4000.0, ge=0)
    fid_warning_ms: float = Field(100.0, ge=0)
    fid_critical_ms: float = Field(300.0, ge=0)
    cls_warning: float = Field(0.1, ge=0)
    cls_critical: float = Field(0.25, ge=0)
    memory_warning_bytes: int = Field(50 * MB, ge=0)
    memory_critical_bytes: int = Field(100 * MB, ge=0)
    error_rate_warning: float = Field(5.0, ge=0, description="Errors per minute")
    error_rate_critical: float = Field(10.0, ge=0, description="Errors per minute")

    # Metrics export
    metrics_enabled: bool = Field(True)
    metrics_namespace: str = Field("session_telemetry")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed_environments = {"development", "testing", "staging", "production"}
        if v.lower() not in allowed_environments:
            raise ValueError(f"Environment must be one of: {allowed_environments}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "TelemetrySettings":
        """Every warning threshold must sit at or below its critical threshold."""
        pairs = (
            ("lcp", self.lcp_warning_ms, self.lcp_critical_ms),
            ("fid", self.fid_warning_ms, self.fid_critical_ms),
            ("cls", self.cls_warning, self.cls_critical),
            ("memory", self.memory_warning_bytes, self.memory_critical_bytes),
            ("error_rate", self.error_rate_warning, self.error_rate_critical),
        )
        for name, warning, critical in pairs:
            if warning > critical:
                raise ValueError(f"{name} warning threshold exceeds critical threshold")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> TelemetrySettings:
    """
    Get cached application settings.

    Returns:
        TelemetrySettings: The application settings instance.
    """
    return TelemetrySettings()


def load_settings(env_file: Optional[str] = None) -> TelemetrySettings:
    """Load settings bypassing the cache, optionally from a specific env file."""
    if env_file is None:
        return TelemetrySettings()
    return TelemetrySettings(_env_file=env_file)


__all__ = ["TelemetrySettings", "get_settings", "load_settings", "MB"]
