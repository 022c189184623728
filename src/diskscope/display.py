"""Rich terminal display helpers for diskscope."""

from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from diskscope.models import MetricSample, Node, NodeKind, ScanProgress, ScanState

console = Console()

SPARK_CHARS = "▁▂▃▄▅▆▇█"


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable string (decimal units like macOS)."""
    if size_bytes >= 1000**4:
        return f"{size_bytes / (1000**4):.1f} TB"
    elif size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


def format_rate(bytes_per_sec: float) -> str:
    return f"{format_size(int(bytes_per_sec))}/s"


def sparkline(values: Iterable[float], width: Optional[int] = None, ceiling: Optional[float] = None) -> str:
    """
    Render values as a unicode sparkline.

    Args:
        values: Samples, oldest first
        width: Keep only the last `width` values
        ceiling: Value drawn as a full block (defaults to the maximum)
    """
    values = list(values)
    if width is not None:
        values = values[-width:]
    if not values:
        return ""

    top = ceiling if ceiling is not None else max(values)
    if top <= 0:
        return SPARK_CHARS[0] * len(values)

    steps = len(SPARK_CHARS) - 1
    chars = []
    for v in values:
        ratio = min(max(v / top, 0.0), 1.0)
        chars.append(SPARK_CHARS[round(ratio * steps)])
    return "".join(chars)


def state_marker(node: Node) -> str:
    """Short markup describing a node's scan state."""
    if node.scan_state == ScanState.ERROR:
        return "[red]error[/red]"
    if node.scan_state == ScanState.CANCELLED:
        return "[yellow]cancelled[/yellow]"
    if node.scan_state in (ScanState.PENDING, ScanState.SCANNING):
        return "[cyan]scanning…[/cyan]"
    if node.is_alias:
        return "[dim]alias[/dim]"
    if node.partial:
        return "[yellow]partial[/yellow]"
    return ""


def kind_icon(kind: NodeKind) -> str:
    icons = {
        NodeKind.DIRECTORY: "▸",
        NodeKind.FILE: " ",
        NodeKind.SYMLINK: "↪",
        NodeKind.SPECIAL: "◆",
        NodeKind.INACCESSIBLE: "✗",
    }
    return icons.get(kind, "?")


def size_bar(size: int, total: int, width: int = 20) -> str:
    """Proportional bar of a child's share of its parent."""
    if total <= 0:
        return "░" * width
    filled = min(width, int(width * size / total))
    return "█" * filled + "░" * (width - filled)


def metrics_line(samples: list[MetricSample], width: int = 30) -> str:
    """One-line metrics strip: CPU, memory and disk I/O with sparklines."""
    if not samples:
        return "[dim]Collecting metrics...[/dim]"

    latest = samples[-1]
    parts = []

    if "cpu" in latest.unavailable:
        parts.append("CPU [dim]unavailable[/dim]")
    else:
        cpu_spark = sparkline([s.cpu_percent for s in samples], width, ceiling=100.0)
        parts.append(f"CPU {latest.cpu_percent:5.1f}% [green]{cpu_spark}[/green]")

    if "memory" in latest.unavailable:
        parts.append("Mem [dim]unavailable[/dim]")
    else:
        mem_spark = sparkline([s.memory_percent for s in samples], width, ceiling=100.0)
        parts.append(
            f"Mem {format_size(latest.memory_used_bytes)}/{format_size(latest.memory_total_bytes)} "
            f"[magenta]{mem_spark}[/magenta]"
        )

    if "disk" in latest.unavailable:
        parts.append("Disk [dim]unavailable[/dim]")
    else:
        io_spark = sparkline(
            [s.disk_read_bytes_per_sec + s.disk_write_bytes_per_sec for s in samples], width
        )
        parts.append(
            f"Disk R {format_rate(latest.disk_read_bytes_per_sec)} "
            f"W {format_rate(latest.disk_write_bytes_per_sec)} [blue]{io_spark}[/blue]"
        )

    return "  ".join(parts)


def show_scanning_progress() -> Progress:
    """Create a progress display for a blocking scan."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def show_tree_report(root: Node, limit: int = 20, out: Optional[Console] = None) -> None:
    """Display the largest children of a scanned directory."""
    out = out or console
    title = f"{escape(root.path)} - {format_size(root.cumulative_size)}"
    if root.partial:
        title += " (partial)"

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Size", justify="right")
    table.add_column("Share")
    table.add_column("Name")
    table.add_column("State")

    children = root.sorted_children()
    for child in children[:limit]:
        name = child.name + ("/" if child.is_dir else "")
        table.add_row(
            format_size(child.cumulative_size),
            size_bar(child.cumulative_size, root.cumulative_size),
            f"{kind_icon(child.kind)} {escape(name)}",
            state_marker(child),
        )

    out.print(table)
    if len(children) > limit:
        out.print(f"[dim]...and {len(children) - limit} more entries[/dim]")


def show_progress_summary(progress: ScanProgress, elapsed: float, out: Optional[Console] = None) -> None:
    """Display scan counters."""
    out = out or console
    lines = [
        f"[bold]Scanned:[/bold] {format_size(progress.bytes_scanned)}",
        f"  Files: {progress.files_visited:,}  Directories: {progress.dirs_visited:,}",
        f"  Cache hits: {progress.cache_hits:,}  Hard-link aliases: {progress.aliases:,}",
    ]
    if progress.errors:
        lines.append(f"  [red]Errors: {progress.errors:,}[/red] (sizes are lower bounds)")
    lines.append(f"  [dim]Elapsed: {elapsed:.1f}s[/dim]")
    out.print(Panel("\n".join(lines), title="Summary", border_style="blue"))


def show_metrics(samples: list[MetricSample], out: Optional[Console] = None) -> None:
    """Display a table of metric samples."""
    out = out or console
    table = Table(title="System Metrics", show_header=True, header_style="bold")
    table.add_column("Time")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    table.add_column("Disk read", justify="right")
    table.add_column("Disk write", justify="right")

    for s in samples:
        table.add_row(
            s.timestamp.strftime("%H:%M:%S"),
            "n/a" if "cpu" in s.unavailable else f"{s.cpu_percent:.1f}%",
            "n/a" if "memory" in s.unavailable else f"{s.memory_percent:.0f}%",
            "n/a" if "disk" in s.unavailable else format_rate(s.disk_read_bytes_per_sec),
            "n/a" if "disk" in s.unavailable else format_rate(s.disk_write_bytes_per_sec),
        )
    out.print(table)
