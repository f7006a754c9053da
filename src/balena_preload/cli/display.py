"""Rich-based progress bars and spinners for preload events.

All widgets of a run share one :class:`~rich.progress.Progress` live
display, since rich allows a single live display per console.  Progress
bars are tasks with a total of 100; spinners are indeterminate tasks that
become visible on ``start()`` and are marked finished on ``stop()``.
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TaskProgressColumn, TextColumn


class TerminalDisplay:
    """Owns the live display and hands out named widgets."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
            transient=False,
        )
        self._started = False

    def _ensure_started(self) -> Progress:
        if not self._started:
            self._progress.start()
            self._started = True
        return self._progress

    def progress_bar(self, name: str) -> ProgressBar:
        return ProgressBar(self._ensure_started(), name)

    def spinner(self, name: str) -> Spinner:
        return Spinner(self._ensure_started(), name)

    def close(self) -> None:
        """Stop the live display (idempotent)."""
        if self._started:
            self._progress.stop()
            self._started = False


class ProgressBar:
    def __init__(self, progress: Progress, name: str) -> None:
        self.name = name
        self._progress = progress
        self._task_id: TaskID = progress.add_task(name, total=100)

    def update(self, percentage: float) -> None:
        self._progress.update(self._task_id, completed=percentage)


class Spinner:
    def __init__(self, progress: Progress, name: str) -> None:
        self.name = name
        self._progress = progress
        self._task_id: TaskID = progress.add_task(name, total=None, start=False, visible=False)

    def start(self) -> None:
        self._progress.update(self._task_id, visible=True)
        self._progress.start_task(self._task_id)

    def stop(self) -> None:
        self._progress.update(self._task_id, total=1, completed=1)
        self._progress.stop_task(self._task_id)
