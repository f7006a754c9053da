"""Tests for terminal error classification and reporting."""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from balena_preload import ISSUES_URL
from balena_preload.cli.errors import Failure, classify, embedded_exit_code, report
from balena_preload.shared.enums import ErrorKind
from balena_preload.shared.exceptions import (
    ApplicationNotFoundError,
    ArchitectureMismatchError,
    AuthError,
    BalenaApiError,
    EngineError,
    UsageError,
)


class _CodedError(Exception):
    def __init__(self, message: str, code: object) -> None:
        super().__init__(message)
        self.code = code


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, force_terminal=False, width=200), buffer


class TestClassify:
    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (UsageError("missing --app"), ErrorKind.USAGE),
            (AuthError("the API token was rejected"), ErrorKind.AUTH),
            (ArchitectureMismatchError("architecture mismatch"), ErrorKind.DOMAIN),
            (BalenaApiError("boom", status_code=500), ErrorKind.DOMAIN),
            (ApplicationNotFoundError("application 1 not found"), ErrorKind.DOMAIN),
            (EngineError("helper crashed"), ErrorKind.DOMAIN),
            (KeyError("x"), ErrorKind.UNEXPECTED),
        ],
    )
    def test_kinds(self, error: BaseException, kind: ErrorKind) -> None:
        assert classify(error).kind is kind

    def test_known_errors_exit_with_one(self) -> None:
        failure = classify(ArchitectureMismatchError("architecture mismatch"))

        assert failure == Failure(ErrorKind.DOMAIN, "architecture mismatch", 1)

    def test_unexpected_error_uses_embedded_code(self) -> None:
        failure = classify(_CodedError("disk full", 28))

        assert failure.exit_code == 28
        assert failure.message == "_CodedError: disk full"

    @pytest.mark.parametrize("code", [None, 0, -2, "3", True])
    def test_unusable_embedded_code_falls_back_to_one(self, code: object) -> None:
        assert embedded_exit_code(_CodedError("x", code)) == 1


class TestReport:
    def test_domain_error_prints_single_line(self) -> None:
        error = ArchitectureMismatchError("architecture mismatch: image is amd64, application fleet is armv7hf")
        console, buffer = _console()

        report(classify(error), error, console)

        assert buffer.getvalue() == (
            "Error: architecture mismatch: image is amd64, application fleet is armv7hf\n"
        )

    def test_auth_error_prints_single_line(self) -> None:
        error = AuthError("the API token was rejected")
        console, buffer = _console()

        report(classify(error), error, console)

        assert buffer.getvalue() == "Error: the API token was rejected\n"

    def test_message_with_brackets_is_not_markup(self) -> None:
        error = EngineError("[bold]not markup[/bold]")
        console, buffer = _console()

        report(classify(error), error, console)

        assert "[bold]not markup[/bold]" in buffer.getvalue()

    def test_usage_error_prints_usage(self) -> None:
        error = UsageError("missing --app")
        console, buffer = _console()

        report(classify(error), error, console)

        assert "Usage: balena-preload [options]" in buffer.getvalue()

    def test_unexpected_error_points_to_issue_tracker(self) -> None:
        try:
            raise ValueError("unexpected state")
        except ValueError as exc:
            error = exc
        console, buffer = _console()

        report(classify(error), error, console)

        output = buffer.getvalue()
        assert "unexpected state" in output
        assert f"Please report it at {ISSUES_URL}" in output
