"""Hierarchical exception types for balena-preload."""

from __future__ import annotations


class PreloadError(Exception):
    """Base exception for all balena-preload errors."""


# ── Local ───────────────────────────────────────────────────────


class UsageError(PreloadError):
    """Options are missing or malformed; nothing was provisioned."""


# ── Credentials ─────────────────────────────────────────────────


class AuthError(PreloadError):
    """The API token could not be exchanged for a session."""


# ── Domain ──────────────────────────────────────────────────────


class DomainError(PreloadError):
    """A recognised failure reported by the API or the preload engine."""


class BalenaApiError(DomainError):
    """The balena API answered with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApplicationNotFoundError(DomainError):
    """The requested application does not exist or is not accessible."""


class ReleaseNotFoundError(DomainError):
    """No successful release matches the requested commit."""


class ArchitectureMismatchError(DomainError):
    """The disk image and the application target different CPU architectures."""


class EngineError(DomainError):
    """The preload helper container failed."""
