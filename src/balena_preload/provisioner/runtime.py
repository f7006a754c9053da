"""Lazy Docker client handle."""

from __future__ import annotations

import logging
from typing import Any, cast

import docker

logger = logging.getLogger(__name__)


class ContainerRuntime:
    """Docker client created on first use.

    ``docker.from_env()`` talks to the daemon immediately, so it is deferred
    until the engine actually needs a container.
    """

    def __init__(self) -> None:
        self._docker: Any | None = None

    def client(self) -> Any:
        if self._docker is None:
            self._docker = cast(Any, docker).from_env()
        return self._docker

    def close(self) -> None:
        if self._docker is not None:
            self._docker.close()
            self._docker = None
            logger.debug("docker client closed")
