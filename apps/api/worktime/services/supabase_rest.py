from __future__ import annotations

from typing import Any

import httpx

_http: httpx.AsyncClient | None = None


class SupabaseRestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: str | None = None,
        hint: str | None = None,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.hint = hint
        self.details = details


def get_http() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
    return _http


async def close_http() -> None:
    global _http
    if _http is not None:
        await _http.aclose()
        _http = None


def _str_field(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def error_from_response(resp: httpx.Response) -> SupabaseRestError:
    """Build an error from a PostgREST failure body ({code, message, hint, details})."""
    code = message = hint = None
    details: Any | None = None
    try:
        payload = resp.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        code = _str_field(payload, "code")
        message = _str_field(payload, "message")
        hint = _str_field(payload, "hint")
        details = payload.get("details")
    elif isinstance(payload, str):
        message = payload

    return SupabaseRestError(
        status_code=resp.status_code,
        code=code,
        message=message or resp.text.strip() or f"Supabase request failed ({resp.status_code})",
        hint=hint,
        details=details,
    )


class SupabaseRest:
    """PostgREST client for the work tables, authenticated with the service-role key."""

    def __init__(self, supabase_url: str, service_key: str):
        self._rest_base = supabase_url.rstrip("/") + "/rest/v1"
        self._service_key = service_key

    def _headers(self, *, prefer: str | None = None) -> dict[str, str]:
        h = {
            "apikey": self._service_key,
            "authorization": f"Bearer {self._service_key}",
            "accept": "application/json",
        }
        if prefer:
            h["prefer"] = prefer
        return h

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code >= 400:
            raise error_from_response(resp)

    @staticmethod
    def _rows(resp: httpx.Response) -> list[dict[str, Any]]:
        # 204 and return=minimal responses have no body.
        if not resp.content:
            return []
        data = resp.json()
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        resp = await get_http().request(
            method,
            f"{self._rest_base}/{path}",
            headers=self._headers(prefer=prefer),
            params=params,
            json=json,
        )
        self._raise_for_error(resp)
        return self._rows(resp)

    async def select(self, table: str, *, params: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._send("GET", table, params=params)

    async def insert_one(self, table: str, *, row: dict[str, Any]) -> dict[str, Any]:
        rows = await self._send("POST", table, json=row, prefer="return=representation")
        return rows[0] if rows else {}

    async def update(
        self,
        table: str,
        *,
        params: dict[str, Any],
        values: dict[str, Any],
    ) -> list[dict[str, Any]]:
        return await self._send(
            "PATCH", table, params=params, json=values, prefer="return=representation"
        )

    async def delete(self, table: str, *, params: dict[str, Any]) -> None:
        await self._send("DELETE", table, params=params)

    async def rpc(
        self,
        fn_name: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        # Multi-statement writes run inside a single Postgres function call.
        return await self._send("POST", f"rpc/{fn_name}", json=params or {})
