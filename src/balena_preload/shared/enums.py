"""Enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class SessionState(str, Enum):
    """Lifecycle states of one preload session."""

    CREATED = "created"
    PREPARING = "preparing"
    PRELOADING = "preloading"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


@unique
class CleanupTrigger(str, Enum):
    """Which finalizer claimed the engine cleanup."""

    NORMAL = "normal"
    SIGNAL = "signal"


@unique
class OutcomeKind(str, Enum):
    """How a session run ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


@unique
class ErrorKind(str, Enum):
    """Classification of a terminal error."""

    USAGE = "usage"
    AUTH = "auth"
    DOMAIN = "domain"
    UNEXPECTED = "unexpected"


@unique
class EventChannel(str, Enum):
    """Channels a preload engine emits on."""

    PROGRESS = "progress"
    SPINNER = "spinner"
    ERROR = "error"


@unique
class SpinnerAction(str, Enum):
    START = "start"
    STOP = "stop"
