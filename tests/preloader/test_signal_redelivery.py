"""The process dies by the signal that interrupted it, after cleanup."""

from __future__ import annotations

import signal
import subprocess
import sys
import textwrap

import pytest

_SCRIPT = textwrap.dedent(
    """
    import asyncio
    import os
    import signal
    import sys

    from balena_preload.preloader.emitter import EventEmitter
    from balena_preload.preloader.session import SessionController

    SIGNUM = int(sys.argv[1])


    class Engine(EventEmitter):
        async def prepare(self):
            pass

        async def preload(self):
            os.kill(os.getpid(), SIGNUM)
            await asyncio.sleep(30)

        async def cleanup(self):
            print("cleaned up", flush=True)


    asyncio.run(SessionController(Engine()).run())
    print("returned normally", flush=True)
    """
)

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_process_terminates_by_redelivered_signal(signum: signal.Signals) -> None:
    result = subprocess.run(
        [sys.executable, "-c", _SCRIPT, str(int(signum))],
        capture_output=True,
        text=True,
        timeout=30,
    )

    assert result.returncode == -signum, result.stderr
    assert result.stdout.splitlines() == ["cleaned up"]
