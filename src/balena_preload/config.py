"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_BALENA_HOST = "balena-cloud.com"


class Settings(BaseSettings):
    """Environment-side configuration read once per process.

    Variable names are unprefixed (``APP_ID``, ``IMAGE`` ...) so that the
    tool can be driven entirely from a container's environment.
    """

    model_config = {"env_prefix": "", "frozen": True, "case_sensitive": False}

    # Preload options (command-line flags override these)
    app_id: str | None = None
    image: str | None = None
    api_token: str | None = None
    api_key: str | None = None
    commit: str | None = None
    splash_image: str | None = None
    dont_check_arch: bool = False

    # Remote API endpoint. BALENARC_BALENA_URL wins over the legacy name.
    balenarc_balena_url: str | None = None
    resinrc_resin_url: str | None = None
    api_timeout_seconds: int = 30

    # Forwarded to the helper container
    https_proxy: str | None = None
    http_proxy: str | None = None

    # Helper container that performs the work on the disk image
    preload_helper_image: str = "balena/balena-preload:latest"

    debug: bool = False

    @field_validator("dont_check_arch", "debug", mode="before")
    @classmethod
    def _non_empty_is_true(cls, value: object) -> object:
        # DONT_CHECK_ARCH=0 still disables the check; only unset/empty is false.
        if isinstance(value, str):
            return bool(value.strip())
        return value

    @field_validator(
        "app_id", "image", "api_token", "api_key", "commit", "splash_image", "https_proxy", "http_proxy", mode="before"
    )
    @classmethod
    def _empty_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def balena_host(self) -> str:
        return self.balenarc_balena_url or self.resinrc_resin_url or DEFAULT_BALENA_HOST

    @property
    def proxy(self) -> str | None:
        return self.https_proxy or self.http_proxy

    @property
    def api_url(self) -> str:
        return f"https://api.{self.balena_host}"


def get_settings() -> Settings:
    """Factory; tests construct Settings directly instead."""
    return Settings()
