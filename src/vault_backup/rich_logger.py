"""Rich-based operator output for backup runs.

Everything the operator reads goes through this module: one-line status messages
with an optional details panel, and the end-of-run summary table. Diagnostics for
developers go to structlog instead. Nothing here may ever print a secret.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

# Operator output goes to stderr so stdout stays clean for piping.
console = Console(stderr=True, soft_wrap=True, highlight=False)


def _safe_json_format(data: Any, max_length: int = 500) -> str:
    """Format data as JSON with truncation."""
    json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    if len(json_str) > max_length:
        json_str = json_str[:max_length] + "\n... (truncated)"
    return json_str


def _details_panel(title: str, data: dict[str, Any], border_style: str, theme: str = "monokai") -> Panel:
    syntax = Syntax(_safe_json_format(data), "json", theme=theme, line_numbers=False, word_wrap=True)
    return Panel(
        syntax,
        title=f"[bold {border_style}]{title}[/bold {border_style}]",
        border_style=border_style,
        box=box.ROUNDED,
        padding=(0, 1),
    )


def log_info(message: str, **kwargs: Any) -> None:
    """Print an informational outcome (nothing to export, no attachments...)."""
    console.print(Text(f"INFO: {message}", style="bold bright_cyan"))
    if kwargs:
        console.print(_details_panel("Details", kwargs, "bright_cyan", theme="dracula"))


def log_warning(message: str, **kwargs: Any) -> None:
    """Print a warning that does not fail the run."""
    console.print(Text(f"WARNING: {message}", style="bold bright_yellow"))
    if kwargs:
        console.print(_details_panel("Warning Details", kwargs, "bright_yellow"))


def log_error(message: str, error: Optional[Exception] = None, **kwargs: Any) -> None:
    """Print an error with the ``ERROR:`` label and a one-line cause."""
    console.print(Text(f"ERROR: {message}", style="bold bright_red"))
    if error or kwargs:
        error_data = kwargs.copy()
        if error:
            error_data["error_type"] = type(error).__name__
            error_data["error_message"] = str(error)
        console.print(_details_panel("Error Details", error_data, "bright_red"))


def log_success(message: str, **kwargs: Any) -> None:
    """Print a success message."""
    console.print(Text(f"OK: {message}", style="bold bright_green"))
    if kwargs:
        console.print(_details_panel("Success Details", kwargs, "bright_green", theme="dracula"))


def log_step(title: str) -> None:
    """Print a section rule between run phases."""
    console.rule(f"[bold]{escape(title)}[/bold]")


def render_summary(
    *,
    export_root: Optional[Path],
    exported: list[str],
    attachments_saved: int,
    attachment_errors: int,
    trash_count: Optional[int],
    archive_path: Optional[Path],
) -> Table:
    """Build the end-of-run summary table."""
    table = Table(title="Backup Summary", box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("Key", style="bold bright_yellow", no_wrap=True)
    table.add_column("Value", overflow="fold")
    table.add_row("Export directory", escape(str(export_root)) if export_root else "[dim]-[/dim]")
    table.add_row("Vaults exported", escape(", ".join(exported)) if exported else "[dim]none[/dim]")
    table.add_row("Attachments saved", str(attachments_saved))
    if attachment_errors:
        table.add_row("Attachment failures", f"[bold red]{attachment_errors}[/bold red]")
    if trash_count is not None:
        table.add_row("Items in trash", str(trash_count))
    if archive_path is not None:
        table.add_row("Archive", escape(str(archive_path)))
    return table
