"""Main TUI application for diskscope."""

from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Footer, Header

from diskscope.context import RunContext
from diskscope.dashboard import Dashboard, DashboardState, Key
from diskscope.deleter import ProtectedDeleter
from diskscope.metrics import MetricsSampler
from diskscope.tui.widgets import EntryList, LocationBar, MetricsStrip, StatusLine


class DiskscopeApp(App):
    """Interactive disk usage explorer."""

    TITLE = "diskscope"
    SUB_TITLE = "Disk usage explorer"

    CSS_PATH = "styles.tcss"

    BINDINGS = [
        Binding("q", "send('quit')", "Quit"),
        Binding("up,k", "send('up')", "Up", show=False),
        Binding("down,j", "send('down')", "Down", show=False),
        Binding("enter,right,l", "send('enter')", "Open"),
        Binding("backspace,left,h", "send('back')", "Back"),
        Binding("d,delete", "send('delete')", "Delete"),
        Binding("y", "send('confirm')", "Yes", show=False),
        Binding("n,escape", "send('cancel')", "No", show=False),
        Binding("r", "send('retry')", "Retry", show=False),
        Binding("s", "send('stop')", "Stop scan"),
    ]

    def __init__(self, dashboard: Dashboard):
        super().__init__()
        self.dashboard = dashboard

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="main-container"):
            yield MetricsStrip(id="metrics")
            yield LocationBar(id="location")
            yield EntryList(id="entries")
            yield StatusLine(id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Start scanning and redraw on a fixed tick."""
        self.dashboard.start()
        self.set_interval(self.dashboard.ctx.settings.tick_interval, self._redraw)
        self._redraw()

    def on_unmount(self) -> None:
        self.dashboard.close()

    def _redraw(self) -> None:
        frame = self.dashboard.tick()
        for widget_type in (MetricsStrip, LocationBar, EntryList, StatusLine):
            self.query_one(widget_type).show(frame)

        if frame.state == DashboardState.ERROR:
            self.sub_title = "error"
        elif frame.state == DashboardState.SCANNING:
            self.sub_title = "scanning…"
        else:
            self.sub_title = self.SUB_TITLE

    def action_send(self, key: str) -> None:
        """Forward a key to the dashboard state machine."""
        if not self.dashboard.handle_key(Key(key)):
            self.exit()
            return
        self._redraw()


def run_dashboard(root_path: str, ctx: Optional[RunContext] = None) -> None:
    """Run the interactive dashboard.

    Args:
        root_path: Directory to explore
        ctx: Run context; a default one is built from the environment if omitted
    """
    ctx = ctx or RunContext()
    settings = ctx.settings
    sampler = MetricsSampler(
        interval=settings.metrics_interval,
        history=settings.metrics_history,
        log=ctx.logger,
    )
    deleter = ProtectedDeleter(operation_log=settings.operation_log)
    dashboard = Dashboard(root_path, ctx=ctx, deleter=deleter, sampler=sampler)
    DiskscopeApp(dashboard).run()
