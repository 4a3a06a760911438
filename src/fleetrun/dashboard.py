"""TUI Dashboard for fleetrun."""

from __future__ import annotations

from typing import Any, Coroutine

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .cancellation import CancellationController
from .dispatch import DispatchResult, Dispatcher, HostStatus
from .errors import CancellationError

STATUS_ICONS = {
    HostStatus.PENDING: ("·", "dim"),
    HostStatus.CONNECTING: ("…", "yellow"),
    HostStatus.RUNNING: ("▶", "yellow"),
    HostStatus.SUCCESS: ("✓", "green"),
    HostStatus.FAILED: ("✗", "red"),
    HostStatus.CANCELLED: ("■", "red"),
}

DONE_STATUSES = (HostStatus.SUCCESS, HostStatus.FAILED, HostStatus.CANCELLED)


def _widget_id(host: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in host)


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[HostStatus] = reactive(HostStatus.PENDING)

    def __init__(self, host: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self.slug = _widget_id(host)

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.slug}")
        yield RichLog(
            id=f"log-{self.slug}",
            highlight=True,
            markup=False,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return f"[{color}]{icon}[/] [{color}][bold]{self.host}[/bold] {self.status.value}[/]"

    def watch_status(self, status: HostStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.slug}", Label)
        header.update(self._get_header())

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.slug}", RichLog)
        log.write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


class HostOutput(Message):
    """Message for host output."""

    def __init__(self, host: str, line: str) -> None:
        self.host = host
        self.line = line
        super().__init__()


class HostStatusChange(Message):
    """Message for host status change."""

    def __init__(self, host: str, status: HostStatus) -> None:
        self.host = host
        self.status = status
        super().__init__()


class Dashboard(App):
    """Live view of a dispatch, one panel per host."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        hosts: tuple[str, ...],
        dispatcher: Dispatcher,
        controller: CancellationController,
        dispatch: Coroutine[Any, Any, dict[str, DispatchResult]],
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.hosts = hosts
        self.dispatcher = dispatcher
        self.controller = controller
        self._dispatch = dispatch
        self.panels: dict[str, HostPanel] = {}
        self.run_cancelled = False
        self._worker: Worker | None = None

        dispatcher.on_output = self._on_output
        dispatcher.on_status = self._on_status

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for host in self.hosts:
            panel = HostPanel(host, id=f"panel-{_widget_id(host)}")
            self.panels[host] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the dispatch when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.hosts)

        # Runs on the app's event loop so cancellation reaches every worker
        self._worker = self.run_worker(self._run_dispatch(), exclusive=True)

    async def _run_dispatch(self) -> None:
        try:
            await self.controller.run(self._dispatch)
        except CancellationError:
            self.run_cancelled = True
            self.exit()

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host: str, line: str) -> None:
        self.post_message(HostOutput(host, line))

    def _on_status(self, host: str, status: HostStatus) -> None:
        self.post_message(HostStatusChange(host, status))

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        if message.host in self.panels:
            self.panels[message.host].append_output(message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        if message.host in self.panels:
            self.panels[message.host].status = message.status

        if message.status in DONE_STATUSES:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Cancel any running dispatch, wait for cleanup, then quit."""
        if self._worker and self._worker.is_running:
            self.controller.interrupt()
            await self._worker.wait()
        self.exit()
