"""Map terminal errors to a message and a process exit status."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.traceback import Traceback

from balena_preload import ISSUES_URL
from balena_preload.cli.options import PROG, USAGE
from balena_preload.shared.enums import ErrorKind
from balena_preload.shared.exceptions import AuthError, DomainError, UsageError

GENERAL_ERROR = 1


@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    message: str
    exit_code: int


def error_kind(error: BaseException) -> ErrorKind:
    if isinstance(error, UsageError):
        return ErrorKind.USAGE
    if isinstance(error, AuthError):
        return ErrorKind.AUTH
    if isinstance(error, DomainError):
        return ErrorKind.DOMAIN
    return ErrorKind.UNEXPECTED


def embedded_exit_code(error: BaseException) -> int:
    """``error.code`` when it is a positive int, else 1."""
    code = getattr(error, "code", None)
    if isinstance(code, int) and not isinstance(code, bool) and code > 0:
        return code
    return GENERAL_ERROR


def classify(error: BaseException) -> Failure:
    kind = error_kind(error)
    if kind in (ErrorKind.USAGE, ErrorKind.AUTH, ErrorKind.DOMAIN):
        return Failure(kind, str(error), GENERAL_ERROR)
    if kind is ErrorKind.UNEXPECTED:
        return Failure(kind, f"{type(error).__name__}: {error}", embedded_exit_code(error))
    raise ValueError(f"unhandled error kind: {kind}")


def report(failure: Failure, error: BaseException, console: Console) -> None:
    """Print ``failure`` on the diagnostic console.

    Usage errors print the usage text, auth and domain errors a single
    ``Error:`` line, and anything else the full traceback with a pointer to
    the issue tracker.
    """
    if failure.kind is ErrorKind.USAGE:
        console.print(USAGE, markup=False, highlight=False, soft_wrap=True)
        return
    if failure.kind in (ErrorKind.AUTH, ErrorKind.DOMAIN):
        console.print(f"Error: {failure.message}", markup=False, highlight=False, soft_wrap=True)
        return

    console.print()
    console.print(Traceback.from_exception(type(error), error, error.__traceback__))
    console.print(
        f"\nLooks like this might be an issue with {PROG}. Please report it at {ISSUES_URL}",
        markup=False,
        highlight=False,
    )
