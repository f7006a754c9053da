"""balena API client over httpx, scoped to one preload run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiofiles  # type: ignore[import-untyped]
import httpx

from balena_preload.shared.exceptions import (
    ApplicationNotFoundError,
    AuthError,
    BalenaApiError,
    ReleaseNotFoundError,
)
from balena_preload.shared.models import LATEST_COMMIT, Application, Release

logger = logging.getLogger(__name__)

_APPLICATION_QUERY = {
    "$select": "id,app_name",
    "$expand": (
        "is_for__device_type($select=slug;$expand=is_of__cpu_architecture($select=slug)),"
        "should_be_running__release($select=id,commit)"
    ),
}

TOKEN_FILENAME = "token"


class BalenaApiClient:
    """Authenticated access to the balena API.

    All state (the session token) is kept under ``data_directory`` so a run
    never touches credentials of another run or of the user's own CLI.
    """

    def __init__(
        self,
        api_url: str,
        *,
        data_directory: Path,
        api_key: str | None = None,
        timeout: int = 30,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.data_directory = data_directory
        self.api_key = api_key
        self._token: str | None = None
        self._http = httpx.AsyncClient(base_url=self.api_url, timeout=timeout)

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def is_logged_in(self) -> bool:
        return self._token is not None

    async def login_with_token(self, token: str) -> None:
        """Exchange an API token for an authenticated session.

        Raises:
            AuthError: If the API rejects the token or cannot be reached.
        """
        try:
            resp = await self._http.get("/user/v1/whoami", headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            raise AuthError(f"could not reach {self.api_url} to log in: {exc}") from exc
        if resp.status_code in {401, 403}:
            raise AuthError("the API token was rejected")
        if resp.status_code >= 400:
            raise AuthError(f"login failed with status {resp.status_code}: {resp.text[:200]}")
        try:
            user = resp.json()
        except ValueError as exc:
            raise AuthError(f"unexpected login response from {self.api_url}: {resp.text[:200]}") from exc
        if not isinstance(user, dict):
            raise AuthError(f"unexpected login response from {self.api_url}: {resp.text[:200]}")

        self._token = token
        async with aiofiles.open(self.data_directory / TOKEN_FILENAME, "w") as f:
            await f.write(token)
        logger.info("logged in to %s as %s", self.api_url, user.get("username", "<unknown>"))

    def _auth(self) -> tuple[dict[str, str], dict[str, str]]:
        """Return (headers, params) carrying whichever credential is usable."""
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}, {}
        if self.api_key:
            return {}, {"apikey": self.api_key}
        return {}, {}

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        headers, auth_params = self._auth()
        query = {**(params or {}), **auth_params}
        try:
            resp = await self._http.get(path, params=query, headers=headers)
        except httpx.HTTPError as exc:
            raise BalenaApiError(f"request to {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise BalenaApiError(
                f"balena API returned {resp.status_code} for {path}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp.json()

    async def get_application(self, app_id: int) -> Application:
        """Fetch the application with its device type, architecture and current release.

        Raises:
            ApplicationNotFoundError: If the application is not accessible.
            BalenaApiError: On any other API failure.
        """
        body = await self._get(f"/v6/application({app_id})", params=_APPLICATION_QUERY)
        rows = body.get("d") or []
        if not rows:
            raise ApplicationNotFoundError(f"application {app_id} not found")
        return _application_from_row(rows[0])

    async def get_release(self, app_id: int, commit: str | None) -> Release:
        """Resolve ``commit`` (a full hash, a prefix, or ``latest``) to a release.

        Raises:
            ReleaseNotFoundError: If no successful release matches.
        """
        if commit is None or commit == LATEST_COMMIT:
            application = await self.get_application(app_id)
            if application.current_release is None:
                raise ReleaseNotFoundError(f"application {app_id} has no release to preload")
            return application.current_release

        safe_commit = commit.replace("'", "''")
        body = await self._get(
            "/v6/release",
            params={
                "$select": "id,commit",
                "$filter": (
                    f"belongs_to__application eq {app_id} "
                    f"and startswith(commit,'{safe_commit}') and status eq 'success'"
                ),
                "$orderby": "created_at desc",
                "$top": "1",
            },
        )
        rows = body.get("d") or []
        if not rows:
            raise ReleaseNotFoundError(f"no successful release with commit {commit} for application {app_id}")
        return Release(id=rows[0]["id"], commit=rows[0]["commit"])

    async def aclose(self) -> None:
        await self._http.aclose()


def _first(value: Any) -> dict[str, Any] | None:
    """Expanded navigation properties come back as one-element lists."""
    if isinstance(value, list):
        return value[0] if value else None
    if isinstance(value, dict):
        return value
    return None


def _application_from_row(row: dict[str, Any]) -> Application:
    device_type = _first(row.get("is_for__device_type")) or {}
    arch = _first(device_type.get("is_of__cpu_architecture")) or {}
    release_row = _first(row.get("should_be_running__release"))
    return Application(
        id=row["id"],
        app_name=row.get("app_name", ""),
        device_type=device_type.get("slug", ""),
        arch=arch.get("slug", ""),
        current_release=Release(id=release_row["id"], commit=release_row["commit"]) if release_row else None,
    )
