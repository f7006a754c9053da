"""Provision the per-run API client and container runtime."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from balena_preload.config import Settings
from balena_preload.provisioner.api import BalenaApiClient
from balena_preload.provisioner.runtime import ContainerRuntime
from balena_preload.shared.models import PreloadOptions

logger = logging.getLogger(__name__)

_TMP_PREFIX = "balena-preload-"


@dataclass(frozen=True, slots=True)
class ClientBundle:
    """Clients owned by exactly one session."""

    api: BalenaApiClient
    runtime: ContainerRuntime
    data_directory: Path

    async def aclose(self) -> None:
        """Close both clients and delete the private data directory."""
        loop = asyncio.get_running_loop()
        try:
            await self.api.aclose()
            await loop.run_in_executor(None, self.runtime.close)
        finally:
            await loop.run_in_executor(None, partial(shutil.rmtree, self.data_directory, ignore_errors=True))
            logger.debug("removed data directory %s", self.data_directory)


async def provision_clients(options: PreloadOptions, settings: Settings) -> ClientBundle:
    """Create an isolated, authenticated API client and a runtime handle.

    Raises:
        AuthError: If the API token is rejected. Not retried.
        OSError: If the temporary directory cannot be created.
    """
    loop = asyncio.get_running_loop()
    data_directory = Path(await loop.run_in_executor(None, partial(tempfile.mkdtemp, prefix=_TMP_PREFIX)))
    logger.debug("api client data directory: %s", data_directory)

    api = BalenaApiClient(
        settings.api_url,
        data_directory=data_directory,
        api_key=options.api_key,
        timeout=settings.api_timeout_seconds,
    )
    bundle = ClientBundle(api=api, runtime=ContainerRuntime(), data_directory=data_directory)

    if options.api_token:
        try:
            await api.login_with_token(options.api_token)
        except BaseException:
            await bundle.aclose()
            raise
    else:
        logger.info("no api token given; authenticating each request with the api key")
    return bundle
