"""
Command Line Interface for Session Telemetry.

Shows the effective configuration, computes experiment buckets, and runs a
short synthetic session through the full collector and dashboard pipeline.
"""

import asyncio
import sys
from typing import List

import typer
from rich.console import Console
from rich.table import Table

from session_telemetry import __version__
from session_telemetry.analytics.ab_testing import bucket_for_user
from session_telemetry.analytics.alerting import PerformanceAlert
from session_telemetry.app import TelemetryApp
from session_telemetry.config.settings import get_settings
from session_telemetry.core.events import (
    CLICK_EVENT,
    PERFORMANCE_ENTRY_EVENT,
    SCROLL_EVENT,
    InteractionEvent,
    PerformanceEntry,
)
from session_telemetry.core.logging import get_logger, setup_logging

app = typer.Typer(
    name="session-telemetry",
    help="Session performance monitoring and analytics CLI",
    add_completion=False,
)
console = Console()

# Entries a freshly loaded page would report
SYNTHETIC_ENTRIES = (
    PerformanceEntry(entry_type="paint", name="first-contentful-paint", start_time=900.0),
    PerformanceEntry(entry_type="largest-contentful-paint", start_time=2100.0),
    PerformanceEntry(entry_type="first-input", start_time=3000.0, processing_start=3045.0),
    PerformanceEntry(entry_type="layout-shift", value=0.04),
    PerformanceEntry(entry_type="layout-shift", value=0.03),
)


@app.command()
def version():
    """Show version information."""
    console.print(f"Session Telemetry v{__version__}")


@app.command()
def show_config():
    """Show the effective configuration."""
    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"Configuration is invalid: {e}", style="red")
        sys.exit(1)

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))

    console.print(table)


@app.command()
def bucket(user_id: str = typer.Argument(..., help="User id to bucket")):
    """Show the experiment bucket (0-99) a user id falls into."""
    console.print(f"{user_id}: bucket {bucket_for_user(user_id)}")


@app.command()
def simulate(
    duration: float = typer.Option(2.0, min=0.0, help="Seconds to keep the session running"),
    errors: int = typer.Option(0, min=0, help="Number of synthetic errors to report"),
):
    """Run a synthetic session and print the resulting metrics and alerts."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.environment)
    logger = get_logger("cli")

    logger.info("Starting simulated session", duration=duration, errors=errors)
    telemetry, alerts = asyncio.run(_run_session(duration, errors))

    metrics = telemetry.dashboard.get_current_metrics()
    if metrics is not None:
        table = Table(title="Session Metrics")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="magenta")
        table.add_column("Grade")

        vitals = metrics.core_web_vitals
        table.add_row("LCP", f"{vitals.lcp.value:g} ms", vitals.lcp.grade.value)
        table.add_row("FID", f"{vitals.fid.value:g} ms", vitals.fid.grade.value)
        table.add_row("CLS", f"{vitals.cls.value:g}", vitals.cls.grade.value)
        table.add_row("Memory", f"{metrics.memory_usage.current} bytes", metrics.memory_usage.pressure.value)
        table.add_row("Errors", str(metrics.error_rate.total), f"{metrics.error_rate.rate}/min")
        console.print(table)

    if alerts:
        alert_table = Table(title="Alerts")
        alert_table.add_column("Type", style="cyan")
        alert_table.add_column("Severity")
        alert_table.add_column("Message")
        for alert in alerts:
            alert_table.add_row(alert.type.value, alert.severity.value, alert.message)
        console.print(alert_table)
    else:
        console.print("No alerts raised", style="green")


async def _run_session(duration: float, errors: int):
    telemetry = TelemetryApp()
    alerts: List[PerformanceAlert] = []
    telemetry.dashboard.on_alert(alerts.append)

    telemetry.start()
    try:
        for entry in SYNTHETIC_ENTRIES:
            telemetry.events.emit(PERFORMANCE_ENTRY_EVENT, entry)

        telemetry.events.emit(CLICK_EVENT, InteractionEvent(type=CLICK_EVENT, target="button#start"))
        telemetry.events.emit(SCROLL_EVENT, InteractionEvent(type=SCROLL_EVENT))

        for i in range(errors):
            telemetry.error_tracker.report_error(RuntimeError(f"Simulated failure {i + 1}"))

        await asyncio.sleep(duration)
        telemetry.dashboard.collect_current_metrics()
    finally:
        telemetry.stop()

    return telemetry, alerts


if __name__ == "__main__":
    app()
