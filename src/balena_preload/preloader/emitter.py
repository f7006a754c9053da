"""Minimal synchronous publish/subscribe for engine events."""

from __future__ import annotations

import logging
from typing import Any

from balena_preload.preloader.interfaces import EventHandler
from balena_preload.shared.enums import EventChannel

logger = logging.getLogger(__name__)


class EventEmitter:
    """Channel -> handlers, called in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[EventChannel, list[EventHandler]] = {}

    def on(self, channel: EventChannel, handler: EventHandler) -> None:
        self._handlers.setdefault(EventChannel(channel), []).append(handler)

    def emit(self, channel: EventChannel, payload: Any) -> None:
        key = EventChannel(channel)
        handlers = self._handlers.get(key, [])
        if not handlers:
            logger.debug("no handler for %s event: %s", key.value, payload)
        for handler in list(handlers):
            handler(payload)
