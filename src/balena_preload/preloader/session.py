"""Session controller: run prepare -> preload and clean up exactly once.

Two finalizers can release the engine:

* the normal finalizer, after the prepare/preload chain settles (success,
  failure, or an ``error`` event from the engine);
* the signal finalizer, when SIGINT/SIGTERM arrives before that.

Both must claim ``cleanup_trigger`` first and it can be claimed once, so the
engine's non-idempotent ``cleanup()`` is never called twice.  After a signal
the same signal is re-delivered to the process once cleanup is over, so a
supervising parent sees the real cause of death instead of an exit status.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from balena_preload.preloader.interfaces import Preloader
from balena_preload.shared.enums import CleanupTrigger, EventChannel, OutcomeKind, SessionState

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Tagged result of one session run."""

    kind: OutcomeKind
    error: BaseException | None = None
    signal: int | None = None

    @classmethod
    def succeeded(cls) -> RunOutcome:
        return cls(OutcomeKind.SUCCEEDED)

    @classmethod
    def failed(cls, error: BaseException) -> RunOutcome:
        return cls(OutcomeKind.FAILED, error=error)

    @classmethod
    def interrupted(cls, signum: int) -> RunOutcome:
        return cls(OutcomeKind.INTERRUPTED, signal=signum)


def redeliver_signal(signum: int) -> None:
    """Restore the default disposition and send ``signum`` to ourselves."""
    signal.signal(signum, signal.SIG_DFL)
    os.kill(os.getpid(), signum)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class SessionController:
    """Owns one engine instance for one run.

    Args:
        engine: The preload engine. Only this controller calls its
            ``prepare``/``preload``/``cleanup``.
        signals: Signals that interrupt the run.
        redeliver: Called with the signal number after signal-triggered
            cleanup. The default kills the process with that signal.
        release_resources: Awaited once right after engine cleanup on either
            path (closes clients, the display ...).
    """

    def __init__(
        self,
        engine: Preloader,
        *,
        signals: Iterable[int] = DEFAULT_SIGNALS,
        redeliver: Callable[[int], None] = redeliver_signal,
        release_resources: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.engine = engine
        self.state = SessionState.CREATED
        self.terminated_by_signal = False
        self.received_signal: int | None = None
        self.cleanup_trigger: CleanupTrigger | None = None
        self._signals = tuple(signals)
        self._installed_signals: list[int] = []
        self._redeliver = redeliver
        self._release_resources = release_resources
        self._loop: asyncio.AbstractEventLoop | None = None
        self._interrupted: asyncio.Event | None = None
        self._engine_error: asyncio.Future[None] | None = None
        self._signal_cleanup: asyncio.Task[None] | None = None
        self._ran = False

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def run(self) -> RunOutcome:
        """Drive the engine to completion, failure, or interruption."""
        if self._ran:
            raise RuntimeError("a session controller runs only once")
        self._ran = True

        self._loop = asyncio.get_running_loop()
        self._interrupted = asyncio.Event()
        self._engine_error = self._loop.create_future()
        self.engine.on(EventChannel.ERROR, self._on_engine_error)
        self._install_signal_handlers()

        phases = asyncio.ensure_future(self._run_phases())
        interrupted = asyncio.ensure_future(self._interrupted.wait())
        try:
            await asyncio.wait({phases, interrupted, self._engine_error}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            interrupted.cancel()
            if not self._engine_error.done():
                self._engine_error.cancel()

        if self.terminated_by_signal:
            _consume_abandoned(phases)
            assert self._signal_cleanup is not None
            await self._signal_cleanup
            return RunOutcome.interrupted(self.received_signal)  # type: ignore[arg-type]

        if phases.done():
            error = phases.exception()
        else:
            # The engine reported a failure while a phase was still running.
            error = self._engine_error.exception()
            _consume_abandoned(phases)
        return await self._finish_normally(error)

    def handle_signal(self, signum: int) -> None:
        """Signal finalizer; also the loop's signal handler."""
        if self.received_signal is not None:
            logger.warning("received %s while shutting down, please wait...", _signal_name(signum))
            return
        self.received_signal = signum
        self.terminated_by_signal = True
        logger.warning("received %s, cleaning up", _signal_name(signum))

        if self._claim(CleanupTrigger.SIGNAL):
            self._signal_cleanup = asyncio.ensure_future(self._cleanup_then_redeliver(signum))
        if self._interrupted is not None:
            self._interrupted.set()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _run_phases(self) -> None:
        self.state = SessionState.PREPARING
        logger.info("preparing")
        await self.engine.prepare()
        if self.terminated_by_signal:
            logger.info("not starting preload after %s", _signal_name(self.received_signal or 0))
            return
        self.state = SessionState.PRELOADING
        logger.info("preloading")
        await self.engine.preload()

    def _on_engine_error(self, error: BaseException) -> None:
        assert self._engine_error is not None
        if self._engine_error.done():
            logger.warning("engine error after the run settled: %s", error)
            return
        self._engine_error.set_exception(error)

    # ------------------------------------------------------------------
    # Finalizers
    # ------------------------------------------------------------------

    def _claim(self, trigger: CleanupTrigger) -> bool:
        if self.cleanup_trigger is not None:
            return False
        self.cleanup_trigger = trigger
        return True

    async def _finish_normally(self, error: BaseException | None) -> RunOutcome:
        if error is not None:
            self.state = SessionState.FAILED
            logger.info("run failed: %s", error)

        if self.terminated_by_signal or not self._claim(CleanupTrigger.NORMAL):
            logger.debug("cleanup already claimed by %s", self.cleanup_trigger)
        else:
            self.state = SessionState.CLEANING_UP
            try:
                await self.engine.cleanup()
            except Exception as exc:
                if error is None:
                    error = exc
                else:
                    logger.error("cleanup failed after an earlier error: %s", exc)
            finally:
                await self._release()
                self.state = SessionState.DONE
        self._remove_signal_handlers()

        if self.received_signal is not None:
            # Arrived while our own cleanup was running; it must not run twice.
            self._redeliver(self.received_signal)
            return RunOutcome.interrupted(self.received_signal)
        if error is not None:
            return RunOutcome.failed(error)
        return RunOutcome.succeeded()

    async def _cleanup_then_redeliver(self, signum: int) -> None:
        self.state = SessionState.CLEANING_UP
        try:
            try:
                await self.engine.cleanup()
            except Exception:
                logger.exception("cleanup after %s failed", _signal_name(signum))
            await self._release()
        finally:
            self.state = SessionState.DONE
            self._remove_signal_handlers()
            logger.info("cleanup done, re-delivering %s", _signal_name(signum))
            self._redeliver(signum)

    async def _release(self) -> None:
        if self._release_resources is not None:
            await self._release_resources()

    # ------------------------------------------------------------------
    # Signal handler registration
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        assert self._loop is not None
        for signum in self._signals:
            try:
                self._loop.add_signal_handler(signum, self.handle_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.debug("cannot handle %s here: %s", _signal_name(signum), exc)
                continue
            self._installed_signals.append(signum)

    def _remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        while self._installed_signals:
            self._loop.remove_signal_handler(self._installed_signals.pop())


def _consume_abandoned(phases: asyncio.Future[None]) -> None:
    """Let an interrupted phase finish on its own and log how it ended."""

    def _done(task: asyncio.Future[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.info("abandoned phase ended with: %s", exc)

    phases.add_done_callback(_done)
