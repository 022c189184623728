"""Custom widgets for the diskscope TUI."""

from typing import Optional

from rich.markup import escape
from rich.table import Table
from rich.text import Text
from textual.widgets import Static

from diskscope.dashboard import DashboardState, Frame, Row
from diskscope.display import format_size, kind_icon, metrics_line, size_bar
from diskscope.models import NodeKind, ScanState


class FrameWidget(Static):
    """Static that re-renders from the latest dashboard frame."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.frame: Optional[Frame] = None

    def show(self, frame: Frame) -> None:
        self.frame = frame
        self.refresh()


class MetricsStrip(FrameWidget):
    """CPU, memory and disk I/O with sparklines."""

    def render(self) -> str:
        if self.frame is None:
            return "[dim]Collecting metrics...[/dim]"
        width = max(10, (self.size.width - 90) // 3) if self.size.width else 20
        return metrics_line(list(self.frame.metrics), width=width)


class LocationBar(FrameWidget):
    """Current directory, its total and scan state."""

    def render(self) -> str:
        f = self.frame
        if f is None:
            return "[dim]Starting...[/dim]"

        parts = [f"[bold]{escape(f.cwd)}[/bold]", format_size(f.cwd_size)]
        if f.cwd_state in (ScanState.PENDING, ScanState.SCANNING):
            parts.append("[cyan]scanning…[/cyan]")
        elif f.cwd_state == ScanState.CANCELLED:
            parts.append("[yellow]cancelled[/yellow]")
        if f.cwd_partial:
            parts.append("[yellow]partial[/yellow]")
        if f.dry_run:
            parts.append("[yellow]DRY RUN[/yellow]")

        p = f.progress
        counters = f"[dim]{p.files_visited:,} files · {p.dirs_visited:,} dirs"
        if p.errors:
            counters += f" · {p.errors:,} errors"
        counters += "[/dim]"
        return "  ".join(parts) + "\n" + counters


def _row_state(row: Row) -> str:
    if row.annotation:
        color = "yellow" if row.annotation.startswith("dry run") else "red"
        return f"[{color}]{escape(row.annotation)}[/{color}]"
    if row.scan_state == ScanState.ERROR:
        return f"[red]{escape(row.error or 'error')}[/red]"
    if row.scan_state == ScanState.CANCELLED:
        return "[yellow]cancelled[/yellow]"
    if row.scan_state in (ScanState.PENDING, ScanState.SCANNING):
        return "[cyan]scanning…[/cyan]"
    if row.alias_of:
        return f"[dim]alias of {escape(row.alias_of)}[/dim]"
    if row.partial:
        return "[yellow]partial[/yellow]"
    return ""


class EntryList(FrameWidget):
    """Children of the current directory, largest first, windowed on the cursor."""

    def render(self) -> Table | str:
        f = self.frame
        if f is None:
            return ""
        if f.state == DashboardState.ERROR:
            return f"[red]{escape(f.message or 'Cannot scan this path')}[/red]"
        if not f.rows:
            if f.cwd_state.is_terminal:
                return "[dim]Empty directory[/dim]"
            return "[dim]Scanning...[/dim]"

        visible = max(1, (self.size.height or 20) - 1)
        start = max(0, min(f.cursor - visible // 2, len(f.rows) - visible))
        window = f.rows[start : start + visible]

        table = Table(show_header=True, header_style="bold", expand=True, box=None)
        table.add_column("Size", justify="right", width=10)
        table.add_column("Share", width=22)
        table.add_column("Name", ratio=1)
        table.add_column("State", ratio=1)

        for offset, row in enumerate(window):
            suffix = "/" if row.kind == NodeKind.DIRECTORY else ""
            name = Text(f"{kind_icon(row.kind)} {row.name}{suffix}")
            style = "reverse" if start + offset == f.cursor else ""
            table.add_row(
                format_size(row.size),
                size_bar(row.size, f.cwd_size),
                name,
                _row_state(row),
                style=style,
            )
        return table


class StatusLine(FrameWidget):
    """Messages, confirmation prompts and the delete-in-flight indicator."""

    def render(self) -> str:
        f = self.frame
        if f is None:
            return ""
        if f.state == DashboardState.CONFIRMING_DELETE and f.pending_delete is not None:
            if f.deleting:
                return f"[cyan]{escape(f.message)}[/cyan]"
            return f"[bold red]{escape(f.message)}[/bold red]"
        if f.message:
            return escape(f.message)
        return "[dim]↑/↓ move · enter open · ← back · d delete · s stop scan · q quit[/dim]"
