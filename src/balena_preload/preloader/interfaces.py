"""Protocol interface for preload engines."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from balena_preload.shared.enums import EventChannel

EventHandler = Callable[[Any], None]


@runtime_checkable
class Preloader(Protocol):
    """Engine that injects an application release into a disk image.

    Only the session controller calls ``prepare``, ``preload`` and
    ``cleanup``.
    """

    def on(self, channel: EventChannel, handler: EventHandler) -> None:
        """Subscribe to ``progress``, ``spinner`` or ``error`` events."""
        ...

    async def prepare(self) -> None:
        """Resolve the application and release and check the disk image.

        Raises:
            DomainError: If the application, release or image is unusable
                (for instance on an architecture mismatch).
        """
        ...

    async def preload(self) -> None:
        """Inject the release into the disk image.

        Raises:
            DomainError: If the engine reports a failure.
        """
        ...

    async def cleanup(self) -> None:
        """Release everything ``prepare``/``preload`` acquired.

        Not idempotent; may run while ``preload`` is still in flight.
        """
        ...
