"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

from pydantic import BaseModel

LATEST_COMMIT = "latest"


class PreloadOptions(BaseModel):
    """Validated configuration for one preload run."""

    model_config = {"frozen": True}

    app_id: int
    image: str
    api_token: str | None = None
    api_key: str | None = None
    commit: str | None = None
    splash_image: str | None = None
    dont_check_arch: bool = False
    certificates: tuple[str, ...] = ()
    proxy: str | None = None

    @property
    def commit_or_latest(self) -> str:
        return self.commit or LATEST_COMMIT


class ProgressEvent(BaseModel):
    """Percentage update for a named progress bar."""

    model_config = {"frozen": True}

    name: str
    percentage: float


class SpinnerEvent(BaseModel):
    """Start/stop notification for a named spinner.

    Any action other than ``"start"`` stops the spinner.
    """

    model_config = {"frozen": True}

    name: str
    action: str


class Release(BaseModel):
    """A successful release of an application."""

    model_config = {"frozen": True}

    id: int
    commit: str


class Application(BaseModel):
    """The subset of a balena application the preloader needs."""

    model_config = {"frozen": True}

    id: int
    app_name: str
    device_type: str
    arch: str
    current_release: Release | None = None


class ImageInfo(BaseModel):
    """What the helper container reports about a disk image."""

    model_config = {"frozen": True}

    arch: str
    slug: str | None = None
