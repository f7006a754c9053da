"""Merge command-line flags and environment into ``PreloadOptions``."""

from __future__ import annotations

import argparse
from collections.abc import Sequence

from balena_preload.config import DEFAULT_BALENA_HOST, Settings
from balena_preload.shared.exceptions import UsageError
from balena_preload.shared.models import PreloadOptions

PROG = "balena-preload"

USAGE = f"""
  Usage: {PROG} [options]

  Options:

    --app            Application ID (required)
    --img            Disk image (or zip file for Edison images) to preload into (required)
    --api-token      API token (required, or api-key)
    --api-key        API key (required, or api-token)
    --commit         Application commit to preload (default: latest)
    --splash-image   PNG Image for custom splash screen

    --dont-check-arch          Disables check for matching architecture in image and application

    --add-certificate <filename.crt> Adds the given file to /etc/ssl/certs in the preloading container

    --help, -h       Display {PROG} usage
    --version, -v    Display {PROG} version

  Environment variables:

    BALENARC_BALENA_URL (defaults to {DEFAULT_BALENA_HOST})
    HTTPS_PROXY, HTTP_PROXY (passed on to the preloading container)

    The following option flags can also be set
    via the corresponding environment variables:

    --app                               APP_ID
    --img                               IMAGE
    --api-token                         API_TOKEN
    --api-key                           API_KEY
    --commit                            COMMIT
    --splash-image                      SPLASH_IMAGE
    --dont-check-arch                   DONT_CHECK_ARCH

  Example:

    {PROG} --app 123456 --api-token "xxxx..." --img /path/to/balena-os.img
"""


def wants_help(argv: Sequence[str]) -> bool:
    return "--help" in argv or "-h" in argv


def wants_version(argv: Sequence[str]) -> bool:
    return "--version" in argv or "-v" in argv


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, add_help=False, allow_abbrev=False, exit_on_error=False)
    parser.add_argument("--app", dest="app_id")
    parser.add_argument("--img", dest="image")
    parser.add_argument("--api-token", dest="api_token")
    parser.add_argument("--api-key", dest="api_key")
    parser.add_argument("--commit")
    parser.add_argument("--splash-image", dest="splash_image")
    parser.add_argument("--dont-check-arch", dest="dont_check_arch", action="store_true", default=None)
    parser.add_argument("--add-certificate", dest="certificates", action="append", default=[])
    return parser


def _parse_app_id(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip(), 10)
    except ValueError as exc:
        raise UsageError(f"application id must be an integer, got {raw!r}") from exc


def resolve_options(argv: Sequence[str], settings: Settings) -> PreloadOptions:
    """Build the run configuration; a flag always wins over its env var.

    Unknown tokens are ignored.

    Raises:
        UsageError: If a flag is malformed, or the app id, the image or both
            credentials are missing after the merge.
    """
    try:
        args, _ = _build_parser().parse_known_args(list(argv))
    except argparse.ArgumentError as exc:
        raise UsageError(str(exc)) from exc

    def pick(flag_value: str | None, env_value: str | None) -> str | None:
        return flag_value if flag_value is not None else env_value

    app_id = _parse_app_id(pick(args.app_id, settings.app_id))
    image = pick(args.image, settings.image)
    api_token = pick(args.api_token, settings.api_token)
    api_key = pick(args.api_key, settings.api_key)

    if not (app_id and image and (api_token or api_key)):
        raise UsageError("--app, --img and one of --api-token/--api-key are required")

    return PreloadOptions(
        app_id=app_id,
        image=image,
        api_token=api_token or None,
        api_key=api_key or None,
        commit=pick(args.commit, settings.commit),
        splash_image=pick(args.splash_image, settings.splash_image),
        dont_check_arch=args.dont_check_arch if args.dont_check_arch is not None else settings.dont_check_arch,
        certificates=tuple(args.certificates),
        proxy=settings.proxy,
    )
