"""Process entry point for ``balena-preload``.

This module is the only place that turns outcomes and errors into an exit
status.  A run interrupted by SIGINT/SIGTERM normally never returns here:
the session controller re-delivers the signal and the process dies by it.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence

from pydantic import ValidationError
from rich.console import Console

from balena_preload import __version__
from balena_preload.cli.display import TerminalDisplay
from balena_preload.cli.errors import classify, report
from balena_preload.cli.events import EventRouter
from balena_preload.cli.options import USAGE, resolve_options, wants_help, wants_version
from balena_preload.config import Settings, get_settings
from balena_preload.preloader.container import ContainerPreloader
from balena_preload.preloader.session import RunOutcome, SessionController, redeliver_signal
from balena_preload.provisioner.service import provision_clients
from balena_preload.shared.enums import OutcomeKind
from balena_preload.shared.exceptions import UsageError
from balena_preload.shared.models import PreloadOptions

logger = logging.getLogger(__name__)

SUCCESS = 0
SIGNAL_EXIT_BASE = 128


async def run_preload(
    options: PreloadOptions,
    settings: Settings,
    *,
    console: Console | None = None,
) -> RunOutcome:
    """Provision clients, wire the engine to the display and run one session."""
    bundle = await provision_clients(options, settings)
    display = TerminalDisplay(console)
    try:
        engine = ContainerPreloader.from_options(
            bundle.api,
            bundle.runtime,
            options,
            helper_image=settings.preload_helper_image,
            debug=settings.debug,
        )
        EventRouter(display.progress_bar, display.spinner, display.console).attach(engine)
    except BaseException:
        await bundle.aclose()
        raise

    async def release() -> None:
        display.close()
        await bundle.aclose()

    controller = SessionController(engine, redeliver=redeliver_signal, release_resources=release)
    return await controller.run()


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(error: BaseException, console: Console) -> int:
    failure = classify(error)
    logger.debug("run failed (%s): %s", failure.kind.value, failure.message)
    report(failure, error, console)
    return failure.exit_code


def main(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> int:
    """Run balena-preload and return the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    stdout = Console()
    stderr = Console(stderr=True)

    if wants_help(args):
        stdout.print(USAGE, markup=False, highlight=False, soft_wrap=True)
        return SUCCESS
    if wants_version(args):
        stdout.print(__version__, markup=False, highlight=False)
        return SUCCESS

    try:
        if settings is None:
            try:
                settings = get_settings()
            except ValidationError as exc:
                raise UsageError(f"invalid environment: {exc}") from exc
        _configure_logging(settings.debug)

        options = resolve_options(args, settings)
        outcome = asyncio.run(run_preload(options, settings, console=stdout))
    except Exception as exc:  # noqa: BLE001 - process-level error boundary
        return _fail(exc, stderr)

    if outcome.kind is OutcomeKind.SUCCEEDED:
        return SUCCESS
    if outcome.kind is OutcomeKind.FAILED:
        assert outcome.error is not None
        return _fail(outcome.error, stderr)
    # Only reachable when the re-delivered signal did not end the process.
    return SIGNAL_EXIT_BASE + (outcome.signal or 0)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
