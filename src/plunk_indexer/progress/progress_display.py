"""Rich Live progress line for migration runs.

Keeps a single bottom-anchored status line updated in place while log and
setup messages scroll above it.
"""

import threading
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.text import Text

from ..services.migration_pipeline import BatchReport, MigrationStats


def format_report(report: BatchReport) -> Text:
    """Render a batch report as the in-place progress line."""
    updated = (
        datetime.fromtimestamp(report.last_updated_ms / 1000, tz=timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
        if report.last_updated_ms
        else "-"
    )
    line = Text()
    line.append("Parsed: ", style="bold")
    line.append(f"{report.processed:,} / {report.total:,}")
    line.append(f"  {report.percent:,.2f}%", style="cyan")
    line.append(f"  {report.rate:,.2f}/s", style="green")
    line.append(f"  {report.last_record_id or '-'}", style="dim")
    line.append(f"  {updated}", style="dim")
    return line


class MigrationProgressDisplay:
    """Rich Live manager for the migration progress line.

    Thread-safe: state changes are protected by an internal lock.
    """

    def __init__(self, console: Console):
        """Initialize progress display.

        Args:
            console: Rich console instance for output
        """
        self.console = console
        self.live_component: Optional[Live] = None
        self.is_active = False
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the bottom-anchored display."""
        with self._lock:
            if self.is_active:
                return

            self.live_component = Live(
                renderable="",
                console=self.console,
                refresh_per_second=4,
                transient=False,
            )
            self.live_component.start()
            self.is_active = True

    def update(self, report: BatchReport) -> None:
        """Progress callback for MigrationPipeline."""
        with self._lock:
            if self.is_active and self.live_component is not None:
                self.live_component.update(format_report(report))

    def stop(self) -> None:
        """Stop the display, leaving the last line on screen."""
        with self._lock:
            if self.live_component is not None:
                self.live_component.stop()
                self.live_component = None
            self.is_active = False

    def handle_setup_message(self, message: str) -> None:
        """Print a setup message above the progress line."""
        self.console.print(f"[OK] {message}", style="cyan", markup=False)

    def handle_completion(self, stats: MigrationStats) -> None:
        """Print the end-of-run summary."""
        self.console.print(
            f"[OK] Import completed: {stats.processed:,} plunks in "
            f"{stats.elapsed:,.1f}s ({stats.rate:,.2f}/s)",
            style="green",
            markup=False,
        )

    def handle_error_message(self, record_id: Optional[str], error_msg: str) -> None:
        """Print a fatal error with the failing record."""
        self.console.print(
            f"[ERR] Error during import at {record_id or '<none>'}: {error_msg}",
            style="red",
            markup=False,
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
