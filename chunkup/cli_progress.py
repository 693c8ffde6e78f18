"""Console rendering and progress helpers for the chunk-up CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .errors import ErrorKind
from .models import Part, ProgressSnapshot, SessionState, UploadResult, UploadSession


LARGE_FILE_THRESHOLD = 50 * 1024 * 1024
PERCENT_STEP = 5

console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]chunk-up[/bold green]",
        subtitle="[dim]presigned uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


class SingleFileUploadProgress:
    """
    Progress renderer for one upload session.

    Large files get a live rich bar; small files print a percent line every
    few percent. Methods match UploadProcess event signatures so they can
    be registered directly.
    """

    def __init__(self, filename: str, total_bytes: int):
        self.filename = filename
        self.total_bytes = total_bytes
        self._started = False
        self._last_printed_percent = -1
        self._last_print_time = 0.0
        self._live: Optional[Live] = None
        self._task_id = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[filename]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=console,
        )

    @property
    def uses_live_bar(self) -> bool:
        return self.total_bytes > LARGE_FILE_THRESHOLD

    def start(self) -> None:
        if self._started:
            return

        if self.uses_live_bar:
            self._live = Live(
                self._progress,
                console=console,
                refresh_per_second=5,
                vertical_overflow="visible",
            )
            self._live.start()
            self._task_id = self._progress.add_task(
                "upload",
                filename=self.filename[:60],
                total=self.total_bytes,
            )
        else:
            console.print(f"[cyan]Uploading:[/cyan] {escape(self.filename)}")

        self._started = True

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        if not self._started:
            self.start()

        if self._task_id is not None:
            self._progress.update(self._task_id, completed=snapshot.transferred_bytes)
            return

        now = time.monotonic()
        should_print = (
            snapshot.percent >= 100
            or snapshot.percent - self._last_printed_percent >= PERCENT_STEP
            or now - self._last_print_time >= 2.0
        )
        if should_print and snapshot.percent != self._last_printed_percent:
            console.print(
                f"  {snapshot.percent:3d}% "
                f"({_human_size(snapshot.transferred_bytes)}/{_human_size(snapshot.total_bytes)})"
            )
            self._last_printed_percent = snapshot.percent
            self._last_print_time = now

    def on_state_change(self, session: UploadSession, old: SessionState, new: SessionState) -> None:
        if new == SessionState.MULTIPART_IN_FLIGHT:
            console.print(f"[dim]Multipart upload: {len(session.parts)} parts[/dim]")
        elif new == SessionState.COMPLETING:
            console.print("[dim]Finalizing multipart upload...[/dim]")

    def on_part_retry(self, part: Part, attempt: int, error: Exception) -> None:
        console.print(f"[yellow]Retrying part {part.part_number}[/yellow] after attempt {attempt}: {escape(str(error))}")

    def complete(self, result: UploadResult) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

        if result.success:
            console.print(f"[green]Uploaded:[/green] {escape(self.filename)} -> {escape(result.storage_key or '')}")
            return

        label = "Cancelled" if result.error_kind == ErrorKind.CANCELLED else "Failed"
        kind = f" ({result.error_kind.value})" if result.error_kind else ""
        suffix = f" - {escape(result.error)}" if result.error else ""
        console.print(f"[red]{label}:[/red] {escape(self.filename)}{kind}{suffix}")
