"""Rendering targets for batch progress."""
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from cookspace.tasks import Task, TaskResult, TaskStatus

SEPARATOR = "─" * 38

STATUS_ICONS = {
    TaskStatus.PENDING: ("[ ]", "grey62"),
    TaskStatus.RUNNING: ("[~]", "yellow"),
    TaskStatus.DONE: ("[✓]", "green"),
    TaskStatus.ERROR: ("[✗]", "red"),
    TaskStatus.ABORTED: ("[X]", "red"),
    TaskStatus.SKIPPED: ("[>]", "dark_orange"),
    TaskStatus.BACKGROUNDED: ("[~]", "deep_sky_blue1"),
}


@dataclass
class BatchView:
    """Everything a display needs to draw one batch run.

    Owned by a single run; nothing here is shared between runs.
    """
    title: str
    tasks: List[Task]
    statuses: List[TaskStatus] = field(default_factory=list)
    current_command: str = ""
    output: List[str] = field(default_factory=list)
    hints: List[str] = field(default_factory=list)
    show_output: bool = True
    failures: List[TaskResult] = field(default_factory=list)

    def __post_init__(self):
        if not self.statuses:
            self.statuses = [TaskStatus.PENDING] * len(self.tasks)


def get_status_icon(status: TaskStatus) -> tuple:
    """Get (icon, rich style) for a task status."""
    return STATUS_ICONS.get(status, STATUS_ICONS[TaskStatus.PENDING])


def format_task_line(task: Task, status: TaskStatus) -> str:
    icon, style = get_status_icon(status)
    # Escape icon and label so brackets aren't read as Rich markup
    return f"[{style}]{escape(icon)} {escape(task.label)}[/]"


def format_failure_summary(failures: List[TaskResult]) -> List[str]:
    """Plain-text summary lines for failed tasks."""
    if not failures:
        return []
    lines = [f"{len(failures)} task(s) failed:"]
    for result in failures:
        lines.append(f"  ✗ {result.task.label}")
        if result.error_message:
            lines.append(f"    {result.error_message}")
    return lines


class DisplaySink:
    """Receives batch progress. The base class draws nothing."""

    def open(self, view: BatchView) -> None:
        pass

    def update(self, task_index: int, status: TaskStatus, output_window: List[str]) -> None:
        pass

    def set_current_command(self, command: str) -> None:
        pass

    def show_failures(self, failures: List[TaskResult]) -> None:
        pass

    def close(self) -> None:
        pass


class RichBatchDisplay(DisplaySink):
    """Live terminal view: task list, running command, output tail, hotkeys."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.view: Optional[BatchView] = None
        self._live: Optional[Live] = None
        self._lock = threading.Lock()

    def render(self) -> Panel:
        view = self.view
        lines = [Text.from_markup("[bold]Tasks[/bold]"), Text("")]
        for task, status in zip(view.tasks, view.statuses):
            lines.append(Text.from_markup(format_task_line(task, status)))

        if view.show_output:
            lines.append(Text(""))
            lines.append(Text(view.current_command, style="deep_sky_blue1" if view.current_command else "grey50"))
            lines.append(Text(SEPARATOR, style="grey35"))
            for line in view.output:
                lines.append(Text(f"  {line}", style="grey50"))

        if view.failures:
            lines.append(Text(""))
            summary = format_failure_summary(view.failures)
            lines.append(Text(summary[0], style="bold red"))
            for line in summary[1:]:
                lines.append(Text(line, style="red"))

        subtitle = " | ".join(view.hints) if view.hints else None
        return Panel(Group(*lines), title=escape(view.title), subtitle=subtitle, border_style="cyan")

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self.render(), refresh=True)

    def open(self, view: BatchView) -> None:
        with self._lock:
            self.view = view
            self._live = Live(self.render(), console=self.console, auto_refresh=False, transient=False)
            self._live.start()

    def update(self, task_index: int, status: TaskStatus, output_window: List[str]) -> None:
        with self._lock:
            if self.view is None:
                return
            if 0 <= task_index < len(self.view.statuses):
                self.view.statuses[task_index] = status
            self.view.output = list(output_window) if self.view.show_output else []
            self._refresh()

    def set_current_command(self, command: str) -> None:
        with self._lock:
            if self.view is None:
                return
            self.view.current_command = command
            self._refresh()

    def show_failures(self, failures: List[TaskResult]) -> None:
        with self._lock:
            if self.view is None:
                return
            self.view.failures = list(failures)
            self._refresh()

    def close(self) -> None:
        with self._lock:
            if self._live is not None:
                self._live.stop()
                self._live = None
