"""Route engine progress/spinner events to named display widgets."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from rich.console import Console

from balena_preload.preloader.interfaces import Preloader
from balena_preload.shared.enums import EventChannel, SpinnerAction
from balena_preload.shared.models import ProgressEvent, SpinnerEvent


class ProgressIndicator(Protocol):
    def update(self, percentage: float) -> None: ...


class SpinnerIndicator(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class EventRouter:
    """Lazily creates one widget per event name and keeps it for the run.

    The registries live on the router instance, so two runs (or two tests)
    never share widgets.
    """

    def __init__(
        self,
        progress_factory: Callable[[str], ProgressIndicator],
        spinner_factory: Callable[[str], SpinnerIndicator],
        console: Console,
    ) -> None:
        self._progress_factory = progress_factory
        self._spinner_factory = spinner_factory
        self._console = console
        self.progress_bars: dict[str, ProgressIndicator] = {}
        self.spinners: dict[str, SpinnerIndicator] = {}

    def attach(self, engine: Preloader) -> None:
        engine.on(EventChannel.PROGRESS, self.on_progress)
        engine.on(EventChannel.SPINNER, self.on_spinner)

    def on_progress(self, event: ProgressEvent) -> None:
        bar = self.progress_bars.get(event.name)
        if bar is None:
            bar = self.progress_bars[event.name] = self._progress_factory(event.name)
        bar.update(event.percentage)

    def on_spinner(self, event: SpinnerEvent) -> None:
        spinner = self.spinners.get(event.name)
        if spinner is None:
            spinner = self.spinners[event.name] = self._spinner_factory(event.name)
        if event.action == SpinnerAction.START:
            spinner.start()
        else:
            # Blank line so the stopped spinner is not overwritten.
            self._console.print()
            spinner.stop()
