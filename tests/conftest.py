"""Shared pytest fixtures for the balena-preload test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from balena_preload.config import Settings
from balena_preload.preloader.emitter import EventEmitter
from balena_preload.shared.models import PreloadOptions

_ENV_VARS = (
    "APP_ID",
    "IMAGE",
    "API_TOKEN",
    "API_KEY",
    "COMMIT",
    "SPLASH_IMAGE",
    "DONT_CHECK_ARCH",
    "BALENARC_BALENA_URL",
    "RESINRC_RESIN_URL",
    "PRELOAD_HELPER_IMAGE",
    "API_TIMEOUT_SECONDS",
    "DEBUG",
    "HTTPS_PROXY",
    "HTTP_PROXY",
    "https_proxy",
    "http_proxy",
)

Hook = Callable[["FakeEngine"], Awaitable[None]]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell environment out of Settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def settings() -> Settings:
    return Settings(balenarc_balena_url="balena.test")


@pytest.fixture()
def options() -> PreloadOptions:
    return PreloadOptions(app_id=123456, image="/tmp/x.img", api_token="t")


class FakeEngine(EventEmitter):
    """Scriptable in-memory ``Preloader``.

    ``on_prepare``/``on_preload`` hooks run inside the phase before the
    configured error (if any) is raised, so a hook can deliver a signal and
    then wait for ``cleaned`` to model a phase that outlives its session.
    """

    def __init__(
        self,
        *,
        prepare_error: BaseException | None = None,
        preload_error: BaseException | None = None,
        cleanup_error: BaseException | None = None,
        on_prepare: Hook | None = None,
        on_preload: Hook | None = None,
        on_cleanup: Hook | None = None,
    ) -> None:
        super().__init__()
        self.prepare_error = prepare_error
        self.preload_error = preload_error
        self.cleanup_error = cleanup_error
        self.on_prepare = on_prepare
        self.on_preload = on_preload
        self.on_cleanup = on_cleanup
        self.calls: list[str] = []
        self.cleanup_calls = 0
        self.cleaned = asyncio.Event()

    async def prepare(self) -> None:
        self.calls.append("prepare")
        if self.on_prepare is not None:
            await self.on_prepare(self)
        if self.prepare_error is not None:
            raise self.prepare_error

    async def preload(self) -> None:
        self.calls.append("preload")
        if self.on_preload is not None:
            await self.on_preload(self)
        if self.preload_error is not None:
            raise self.preload_error

    async def cleanup(self) -> None:
        self.calls.append("cleanup")
        self.cleanup_calls += 1
        self.cleaned.set()
        if self.on_cleanup is not None:
            await self.on_cleanup(self)
        if self.cleanup_error is not None:
            raise self.cleanup_error


@pytest.fixture()
def fake_engine_class() -> type[FakeEngine]:
    return FakeEngine
