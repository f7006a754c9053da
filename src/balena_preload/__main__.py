"""Allow ``python -m balena_preload``."""

from __future__ import annotations

from balena_preload.cli.main import cli

if __name__ == "__main__":
    cli()
