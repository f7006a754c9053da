"""Tests for EventRouter dispatch."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from balena_preload.cli.events import EventRouter
from balena_preload.preloader.emitter import EventEmitter
from balena_preload.shared.enums import EventChannel
from balena_preload.shared.models import ProgressEvent, SpinnerEvent


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def router(output: io.StringIO) -> EventRouter:
    console = Console(file=output, force_terminal=False, width=80)
    return EventRouter(
        progress_factory=lambda name: MagicMock(name=f"bar:{name}"),
        spinner_factory=lambda name: MagicMock(name=f"spinner:{name}"),
        console=console,
    )


class TestProgress:
    def test_same_name_reuses_bar(self, router: EventRouter) -> None:
        router.on_progress(ProgressEvent(name="Copying", percentage=45))
        bar = router.progress_bars["Copying"]
        router.on_progress(ProgressEvent(name="Copying", percentage=46))

        assert list(router.progress_bars) == ["Copying"]
        assert router.progress_bars["Copying"] is bar
        assert [c.args for c in bar.update.call_args_list] == [(45,), (46,)]

    def test_decreasing_percentage_is_passed_through(self, router: EventRouter) -> None:
        router.on_progress(ProgressEvent(name="Copying", percentage=50))
        router.on_progress(ProgressEvent(name="Copying", percentage=10))

        router.progress_bars["Copying"].update.assert_called_with(10)

    def test_distinct_names_get_distinct_bars(self, router: EventRouter) -> None:
        router.on_progress(ProgressEvent(name="a", percentage=1))
        router.on_progress(ProgressEvent(name="b", percentage=1))

        assert router.progress_bars["a"] is not router.progress_bars["b"]


class TestSpinner:
    def test_start_then_stop_prints_one_blank_line(self, router: EventRouter, output: io.StringIO) -> None:
        router.on_spinner(SpinnerEvent(name="Resizing", action="start"))
        assert output.getvalue() == ""

        router.on_spinner(SpinnerEvent(name="Resizing", action="stop"))

        spinner = router.spinners["Resizing"]
        spinner.start.assert_called_once_with()
        spinner.stop.assert_called_once_with()
        assert output.getvalue() == "\n"

    def test_any_other_action_stops(self, router: EventRouter) -> None:
        router.on_spinner(SpinnerEvent(name="Resizing", action="start"))
        router.on_spinner(SpinnerEvent(name="Resizing", action="done"))

        router.spinners["Resizing"].stop.assert_called_once_with()

    def test_second_start_reuses_spinner(self, router: EventRouter) -> None:
        router.on_spinner(SpinnerEvent(name="Resizing", action="start"))
        spinner = router.spinners["Resizing"]
        router.on_spinner(SpinnerEvent(name="Resizing", action="start"))

        assert router.spinners["Resizing"] is spinner
        assert spinner.start.call_count == 2


def test_attach_subscribes_to_engine_channels(router: EventRouter) -> None:
    engine = EventEmitter()
    router.attach(engine)

    engine.emit(EventChannel.PROGRESS, ProgressEvent(name="Copying", percentage=5))
    engine.emit(EventChannel.SPINNER, SpinnerEvent(name="Resizing", action="start"))

    router.progress_bars["Copying"].update.assert_called_once_with(5)
    router.spinners["Resizing"].start.assert_called_once_with()


def test_routers_do_not_share_widgets(output: io.StringIO) -> None:
    console = Console(file=output)
    first = EventRouter(MagicMock(), MagicMock(), console)
    second = EventRouter(MagicMock(), MagicMock(), console)

    first.on_progress(ProgressEvent(name="Copying", percentage=5))

    assert second.progress_bars == {}
