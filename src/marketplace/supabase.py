"""Minimal async Supabase client over httpx.

Covers the three surfaces the playground talks to:

- PostgREST (``/rest/v1/<table>``) for ``select`` / ``insert`` / ``delete``
- GoTrue (``/auth/v1/user``) to resolve the user behind an access token
- Edge functions (``/functions/v1/<name>``)

Every transport or HTTP-status failure is raised as
:class:`~src.errors.CollaboratorUnavailable`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import settings
from src.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Thin wrapper around a shared ``httpx.AsyncClient``.

    Pass *http_client* to inject a transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        access_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = (url if url is not None else settings.supabase_url).rstrip("/")
        self._anon_key = anon_key if anon_key is not None else settings.supabase_anon_key
        self._access_token = (
            access_token if access_token is not None else settings.supabase_access_token
        )
        self._http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    @property
    def configured(self) -> bool:
        return bool(self._url and self._anon_key)

    def _headers(self, token: str | None = None) -> dict[str, str]:
        bearer = token or self._access_token or self._anon_key
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {bearer}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        token: str | None = None,
    ) -> httpx.Response:
        if not self.configured:
            msg = "Supabase is not configured (SUPABASE_URL / SUPABASE_ANON_KEY)"
            raise CollaboratorUnavailable(msg)

        all_headers = self._headers(token)
        if headers:
            all_headers.update(headers)

        try:
            resp = await self._http.request(
                method,
                f"{self._url}{path}",
                params=params,
                json=json,
                headers=all_headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Supabase %s %s failed: %s", method, path, exc)
            raise CollaboratorUnavailable(f"{method} {path}: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning(
                "Supabase %s %s returned %d: %s",
                method,
                path,
                resp.status_code,
                resp.text[:200],
            )
            msg = f"{method} {path} returned {resp.status_code}"
            raise CollaboratorUnavailable(msg)
        return resp

    # -- PostgREST -------------------------------------------------------------

    async def select(self, table: str, params: dict[str, str] | None = None) -> list[dict]:
        """``GET /rest/v1/<table>`` with PostgREST filter params."""
        query = {"select": "*"}
        query.update(params or {})
        resp = await self._request("GET", f"/rest/v1/{table}", params=query)
        try:
            rows = resp.json()
        except ValueError as exc:
            raise CollaboratorUnavailable(f"{table}: invalid JSON") from exc
        return rows if isinstance(rows, list) else []

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """``POST /rest/v1/<table>`` without returning the inserted rows."""
        await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=rows,
            headers={"Prefer": "return=minimal"},
        )

    async def delete(self, table: str, params: dict[str, str]) -> int:
        """``DELETE /rest/v1/<table>``. Returns the number of deleted rows.

        PostgREST refuses unfiltered deletes, so *params* must not be empty.
        """
        if not params:
            msg = "Refusing to delete without a filter"
            raise ValueError(msg)
        resp = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=params,
            headers={"Prefer": "return=representation"},
        )
        try:
            rows = resp.json()
        except ValueError:
            return 0
        return len(rows) if isinstance(rows, list) else 0

    # -- Auth ------------------------------------------------------------------

    async def get_user(self, access_token: str) -> dict[str, Any] | None:
        """``GET /auth/v1/user`` for *access_token*."""
        resp = await self._request("GET", "/auth/v1/user", token=access_token)
        try:
            return resp.json()
        except ValueError:
            return None

    # -- Edge functions --------------------------------------------------------

    async def invoke(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        """``POST /functions/v1/<function>`` and return the JSON body."""
        resp = await self._request("POST", f"/functions/v1/{function}", json=payload)
        try:
            data = resp.json()
        except ValueError as exc:
            raise CollaboratorUnavailable(f"{function}: invalid JSON") from exc
        if not isinstance(data, dict):
            raise CollaboratorUnavailable(f"{function}: unexpected response shape")
        return data

    async def aclose(self) -> None:
        await self._http.aclose()
