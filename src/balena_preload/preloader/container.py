"""Preload engine that drives the balena-preload helper container via Docker SDK."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from collections.abc import Callable, Iterable
from functools import partial
from typing import Any, TypeVar

from docker.errors import ContainerError, DockerException, ImageNotFound, NotFound
from pydantic import ValidationError

from balena_preload.preloader.emitter import EventEmitter
from balena_preload.provisioner.api import BalenaApiClient
from balena_preload.provisioner.runtime import ContainerRuntime
from balena_preload.shared.enums import EventChannel, SpinnerAction
from balena_preload.shared.exceptions import ArchitectureMismatchError, DomainError, EngineError
from balena_preload.shared.models import (
    Application,
    ImageInfo,
    PreloadOptions,
    ProgressEvent,
    Release,
    SpinnerEvent,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_MOUNT = "/img/balena.img"
SPLASH_MOUNT = "/img/balena-logo.png"
CERTIFICATE_DIR = "/etc/ssl/certs"

# OS architecture -> application architectures it can run
_COMPATIBLE_ARCHS: dict[str, tuple[str, ...]] = {
    "aarch64": ("armv7hf", "rpi"),
    "armv7hf": ("rpi",),
    "amd64": ("i386",),
}


def is_arch_compatible(image_arch: str, app_arch: str) -> bool:
    return image_arch == app_arch or app_arch in _COMPATIBLE_ARCHS.get(image_arch, ())


class ContainerPreloader(EventEmitter):
    """Implements the ``Preloader`` protocol with a privileged helper container.

    The helper prints one JSON object per line on stdout; ``progress``,
    ``spinner`` and ``error`` objects are re-emitted on the matching channel.
    """

    def __init__(
        self,
        api: BalenaApiClient,
        runtime: ContainerRuntime,
        *,
        app_id: int,
        image: str,
        commit: str | None = None,
        splash_image: str | None = None,
        proxy: str | None = None,
        dont_check_arch: bool = False,
        certificates: Iterable[str] = (),
        helper_image: str = "balena/balena-preload:latest",
        debug: bool = False,
    ) -> None:
        super().__init__()
        self.api = api
        self.runtime = runtime
        self.app_id = app_id
        self.image = os.path.abspath(image)
        self.commit = commit
        self.splash_image = os.path.abspath(splash_image) if splash_image else None
        self.proxy = proxy
        self.dont_check_arch = dont_check_arch
        self.certificates = tuple(os.path.abspath(c) for c in certificates)
        self.helper_image = helper_image
        self.debug = debug
        self.run_id = uuid.uuid4().hex
        self.application: Application | None = None
        self.release: Release | None = None
        self.image_info: ImageInfo | None = None
        # Ids of helper containers that exist and have not been removed yet
        self._container_ids: set[str] = set()
        self._creating: set[asyncio.Future[Any]] = set()
        self._cleaned = False

    @classmethod
    def from_options(
        cls,
        api: BalenaApiClient,
        runtime: ContainerRuntime,
        options: PreloadOptions,
        *,
        helper_image: str,
        debug: bool = False,
    ) -> ContainerPreloader:
        return cls(
            api,
            runtime,
            app_id=options.app_id,
            image=options.image,
            commit=options.commit_or_latest,
            splash_image=options.splash_image,
            proxy=options.proxy,
            dont_check_arch=options.dont_check_arch,
            certificates=options.certificates,
            helper_image=helper_image,
            debug=debug,
        )

    # ------------------------------------------------------------------
    # Preloader protocol
    # ------------------------------------------------------------------

    async def prepare(self) -> None:
        if not os.path.isfile(self.image):
            raise DomainError(f"disk image not found: {self.image}")

        async with self._spinner("Fetching application and release"):
            self.application = await self.api.get_application(self.app_id)
            self.release = await self.api.get_release(self.app_id, self.commit)
        logger.info(
            "preloading %s (%s) release %s",
            self.application.app_name,
            self.application.device_type,
            self.release.commit,
        )

        async with self._spinner("Pulling preload helper image"):
            await self._blocking(self._pull_helper)

        async with self._spinner("Reading disk image"):
            self.image_info = await self._read_image_info()

        if self.dont_check_arch:
            logger.info("architecture check disabled")
        elif not is_arch_compatible(self.image_info.arch, self.application.arch):
            raise ArchitectureMismatchError(
                f"architecture mismatch: image is {self.image_info.arch}, "
                f"application {self.application.app_name} is {self.application.arch}"
            )

    async def preload(self) -> None:
        if self.application is None or self.release is None:
            raise EngineError("preload() called before prepare()")

        loop = asyncio.get_running_loop()
        container = await self._create_container(["preload"], self._volumes(), self._environment())
        logger.info("created helper container %s", container.id[:12])

        await self._start(container)
        await self._blocking(partial(self._follow_output, container, loop))
        await self._check_exit(container, "preload helper")

    async def cleanup(self) -> None:
        """Remove every helper container, including one still being created."""
        self._cleaned = True
        if self._creating:
            logger.info("waiting for %d helper container(s) being created", len(self._creating))
            await asyncio.wait(set(self._creating))
        if not self._container_ids:
            logger.debug("no helper container to remove")
            return
        for container_id in sorted(self._container_ids):
            await self._discard(container_id)

    # ------------------------------------------------------------------
    # Container lifecycle
    # ------------------------------------------------------------------

    async def _create_container(
        self,
        command: list[str],
        volumes: dict[str, dict[str, str]],
        environment: dict[str, str] | None = None,
    ) -> Any:
        if self._cleaned:
            raise EngineError("helper container not created: cleanup already ran")
        future = asyncio.ensure_future(self._blocking(partial(self._create, command, volumes, environment)))
        # Runs before any awaiter of the future resumes.
        future.add_done_callback(self._track)
        self._creating.add(future)
        try:
            return await future
        finally:
            self._creating.discard(future)

    def _track(self, future: asyncio.Future[Any]) -> None:
        if not future.cancelled() and future.exception() is None:
            self._container_ids.add(future.result().id)

    async def _start(self, container: Any) -> None:
        if self._cleaned:
            raise EngineError(f"helper container {container.id[:12]} not started: cleanup already ran")
        await self._blocking(container.start)

    async def _check_exit(self, container: Any, what: str) -> None:
        result = await self._blocking(container.wait)
        status = int(result.get("StatusCode", 1))
        if status != 0:
            tail = await self._blocking(partial(container.logs, stdout=False, stderr=True, tail=20))
            raise EngineError(f"{what} exited with status {status}: {_decode(tail).strip()}")

    async def _discard(self, container_id: str) -> None:
        if container_id not in self._container_ids:
            return
        self._container_ids.discard(container_id)
        await self._blocking(partial(self._remove_container, container_id))

    async def _read_image_info(self) -> ImageInfo:
        container = await self._create_container(["image-info"], {self.image: {"bind": IMAGE_MOUNT, "mode": "ro"}})
        try:
            await self._start(container)
            await self._check_exit(container, "image-info helper")
            output = await self._blocking(partial(container.logs, stdout=True, stderr=False))
        finally:
            await self._discard(container.id)

        lines = [line for line in _decode(output).splitlines() if line.strip()]
        if not lines:
            raise EngineError("preload helper returned no image information")
        try:
            return ImageInfo.model_validate_json(lines[-1])
        except ValidationError as exc:
            raise EngineError(f"unreadable image information from helper: {lines[-1][:200]}") from exc

    # ------------------------------------------------------------------
    # Docker (blocking, run in the default executor)
    # ------------------------------------------------------------------

    async def _blocking(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except ContainerError as exc:
            raise EngineError(f"preload helper failed: {_decode(exc.stderr).strip() or exc}") from exc
        except DockerException as exc:
            raise EngineError(f"docker error: {exc}") from exc

    def _pull_helper(self) -> None:
        client = self.runtime.client()
        try:
            client.images.get(self.helper_image)
            logger.debug("helper image %s already present", self.helper_image)
        except ImageNotFound:
            logger.info("pulling %s", self.helper_image)
            client.images.pull(self.helper_image)

    def _create(
        self,
        command: list[str],
        volumes: dict[str, dict[str, str]],
        environment: dict[str, str] | None,
    ) -> Any:
        return self.runtime.client().containers.create(
            self.helper_image,
            command=command,
            environment=environment,
            volumes=volumes,
            privileged=True,
            labels={"io.balena.preload.app_id": str(self.app_id), "io.balena.preload.run": self.run_id},
        )

    def _remove_container(self, container_id: str) -> None:
        try:
            self.runtime.client().containers.get(container_id).remove(force=True)
        except NotFound:
            logger.warning("helper container %s already removed", container_id[:12])
            return
        logger.info("removed helper container %s", container_id[:12])

    def _follow_output(self, container: Any, loop: asyncio.AbstractEventLoop) -> None:
        """Stream helper output line by line back onto the event loop."""
        buffer = b""
        for chunk in container.logs(stream=True, follow=True, stdout=True, stderr=self.debug):
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            for line in lines:
                loop.call_soon_threadsafe(self._handle_line, _decode(line))
        if buffer.strip():
            loop.call_soon_threadsafe(self._handle_line, _decode(buffer))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("helper: %s", line)
            return
        if not isinstance(message, dict):
            logger.debug("helper: %s", line)
            return

        kind = message.get("type")
        try:
            if kind == EventChannel.PROGRESS:
                self.emit(EventChannel.PROGRESS, ProgressEvent.model_validate(message))
            elif kind == EventChannel.SPINNER:
                self.emit(EventChannel.SPINNER, SpinnerEvent.model_validate(message))
            elif kind == EventChannel.ERROR:
                self.emit(EventChannel.ERROR, EngineError(str(message.get("message") or "preload helper failed")))
            else:
                logger.debug("helper: %s", line)
        except ValidationError as exc:
            logger.warning("ignoring malformed helper event %s: %s", line[:200], exc)

    def _spinner(self, name: str) -> _SpinnerScope:
        return _SpinnerScope(self, name)

    def _environment(self) -> dict[str, str]:
        assert self.application is not None and self.release is not None
        env = {
            "APP_ID": str(self.app_id),
            "DEVICE_TYPE": self.application.device_type,
            "RELEASE_ID": str(self.release.id),
            "RELEASE_COMMIT": self.release.commit,
            "API_HOST": self.api.api_url,
        }
        if self.api.is_logged_in and self.api.token:
            env["API_TOKEN"] = self.api.token
        if self.api.api_key:
            env["API_KEY"] = self.api.api_key
        if self.splash_image:
            env["SPLASH_IMAGE"] = SPLASH_MOUNT
        if self.proxy:
            env["HTTP_PROXY"] = env["HTTPS_PROXY"] = self.proxy
        return env

    def _volumes(self) -> dict[str, dict[str, str]]:
        volumes = {self.image: {"bind": IMAGE_MOUNT, "mode": "rw"}}
        if self.splash_image:
            volumes[self.splash_image] = {"bind": SPLASH_MOUNT, "mode": "ro"}
        for certificate in self.certificates:
            volumes[certificate] = {"bind": f"{CERTIFICATE_DIR}/{os.path.basename(certificate)}", "mode": "ro"}
        return volumes


class _SpinnerScope:
    """``async with`` block wrapped in spinner start/stop events."""

    def __init__(self, emitter: EventEmitter, name: str) -> None:
        self._emitter = emitter
        self._name = name

    async def __aenter__(self) -> None:
        self._emitter.emit(EventChannel.SPINNER, SpinnerEvent(name=self._name, action=SpinnerAction.START.value))

    async def __aexit__(self, *_args: object) -> None:
        self._emitter.emit(EventChannel.SPINNER, SpinnerEvent(name=self._name, action=SpinnerAction.STOP.value))


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
