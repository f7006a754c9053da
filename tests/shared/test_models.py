"""Tests for domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from balena_preload.preloader.session import RunOutcome
from balena_preload.shared.enums import OutcomeKind
from balena_preload.shared.models import Application, PreloadOptions, ProgressEvent, SpinnerEvent


class TestPreloadOptions:
    def test_defaults(self) -> None:
        options = PreloadOptions(app_id=1, image="/x.img", api_key="k")

        assert options.commit_or_latest == "latest"
        assert options.dont_check_arch is False
        assert options.certificates == ()
        assert options.proxy is None

    def test_explicit_commit(self) -> None:
        options = PreloadOptions(app_id=1, image="/x.img", api_key="k", commit="abc")

        assert options.commit_or_latest == "abc"

    def test_frozen(self) -> None:
        options = PreloadOptions(app_id=1, image="/x.img", api_key="k")

        with pytest.raises(ValidationError):
            options.app_id = 2  # type: ignore[misc]


class TestEvents:
    def test_progress_event_from_helper_json(self) -> None:
        event = ProgressEvent.model_validate_json('{"type": "progress", "name": "Copying", "percentage": 12.5}')

        assert event == ProgressEvent(name="Copying", percentage=12.5)

    def test_spinner_action_is_free_text(self) -> None:
        assert SpinnerEvent(name="Resizing", action="whatever").action == "whatever"

    def test_progress_requires_percentage(self) -> None:
        with pytest.raises(ValidationError):
            ProgressEvent.model_validate({"name": "Copying"})


def test_application_without_release() -> None:
    app = Application(id=1, app_name="fleet", device_type="raspberrypi3", arch="armv7hf")

    assert app.current_release is None


def test_run_outcome_constructors() -> None:
    error = RuntimeError("x")

    assert RunOutcome.succeeded().kind is OutcomeKind.SUCCEEDED
    assert RunOutcome.failed(error).error is error
    assert RunOutcome.interrupted(15).signal == 15
