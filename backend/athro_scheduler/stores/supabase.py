from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..errors import StoreError
from ..settings import settings
from .base import Filters, Row

logger = logging.getLogger(__name__)


class SupabaseStore:
    """Table store over the hosted backend's REST interface (PostgREST dialect).

    Requests carry the project API key plus the signed-in user's access token,
    so row-level security on the backend scopes every call to that user.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        url = base_url or settings.supabase_url
        if not url:
            raise ValueError("SUPABASE_URL is not configured")
        self.api_key = api_key or settings.supabase_anon_key
        if not self.api_key:
            raise ValueError("SUPABASE_ANON_KEY is not configured")
        self.rest_url = url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )

    async def select(
        self,
        table: str,
        *,
        match: Filters = None,
        any_of: Filters = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        params = [("select", "*")] + _filter_params(match, any_of)
        if order_by:
            params.append(("order", f"{order_by}.asc"))
        return await self._request("GET", table, params=params)

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        return await self._request("POST", table, json=rows, prefer="return=representation")

    async def update(self, table: str, values: Row, *, match: Filters = None, any_of: Filters = None) -> List[Row]:
        params = _filter_params(match, any_of)
        return await self._request("PATCH", table, params=params, json=values, prefer="return=representation")

    async def delete(self, table: str, *, match: Filters = None, any_of: Filters = None) -> int:
        params = _filter_params(match, any_of)
        if not params:
            # PostgREST refuses unfiltered deletes; refuse early with a clearer message
            raise StoreError(f"refusing to delete every row of {table}")
        rows = await self._request("DELETE", table, params=params, prefer="return=representation")
        return len(rows)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> List[Row]:
        headers: Dict[str, str] = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.rest_url}/{table}"
        try:
            r = await self._client.request(method, url, params=params, json=json, headers=headers)
            r.raise_for_status()
        except httpx.HTTPStatusError as http_err:
            detail = _error_detail(http_err.response)
            logger.warning("%s %s failed with %s: %s", method, table, http_err.response.status_code, detail)
            raise StoreError(
                f"{method} {table} failed ({http_err.response.status_code}): {detail}",
                status_code=http_err.response.status_code,
            ) from http_err
        except httpx.RequestError as net_err:
            logger.warning("%s %s could not reach the backend: %s", method, table, net_err)
            raise StoreError(f"{method} {table} could not reach the backend: {net_err}") from net_err
        if not r.content:
            return []
        try:
            data = r.json()
        except ValueError as exc:
            raise StoreError(f"Unexpected backend response: {r.text}") from exc
        if isinstance(data, dict):
            return [data]
        return list(data)


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _filter_params(match: Filters, any_of: Filters) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = []
    for key, value in (match or {}).items():
        op = "is" if value is None else "eq"
        params.append((key, f"{op}.{_literal(value)}"))
    if any_of:
        clauses = ",".join(f"{key}.eq.{_literal(value)}" for key, value in any_of.items())
        params.append(("or", f"({clauses})"))
    return params


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
