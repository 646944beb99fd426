"""Supabase PostgREST record store over httpx."""

from __future__ import annotations

import logging
import os
from urllib.parse import quote

import httpx

from pawlog.errors import BackendError, TRANSPORT_CODE


logger = logging.getLogger("pawlog.rest")


def _supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def _supabase_api_key() -> str:
    return (os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def http_timeout() -> float:
    try:
        return float(os.getenv("PAWLOG_HTTP_TIMEOUT", "30"))
    except ValueError:
        return 30.0


def _error_from_response(res: httpx.Response) -> BackendError:
    try:
        body = res.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("code"):
        return BackendError(
            code=str(body.get("code")),
            message=str(body.get("message") or ""),
            status=res.status_code,
            detail={"details": body.get("details"), "hint": body.get("hint")},
        )
    return BackendError(code=f"HTTP_{res.status_code}", message=res.text[:500], status=res.status_code)


class RestRecordStore:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or _supabase_url()).rstrip("/")
        self._api_key = api_key if api_key is not None else _supabase_api_key()
        self._access_token = access_token
        self._timeout = timeout if timeout is not None else http_timeout()
        self._transport = transport

    def with_token(self, access_token: str | None) -> "RestRecordStore":
        return RestRecordStore(
            base_url=self._base_url,
            api_key=self._api_key,
            access_token=access_token,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _headers(self) -> dict:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Prefer": "return=representation",
            "Accept": "application/json",
        }

    def _url(self, relation: str) -> str:
        return f"{self._base_url}/rest/v1/{quote(relation, safe='')}"

    async def _request(self, method: str, relation: str, params: dict | None = None, json=None):
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                res = await client.request(method, self._url(relation), params=params, json=json, headers=self._headers())
            except httpx.HTTPError as exc:
                logger.warning("rest_transport_error method=%s relation=%s error=%s", method, relation, exc)
                raise BackendError(code=TRANSPORT_CODE, message=str(exc) or exc.__class__.__name__) from exc
        if res.status_code >= 400:
            raise _error_from_response(res)
        if not res.content:
            return None
        return res.json()

    async def insert(self, relation: str, record: dict) -> dict:
        rows = await self._request("POST", relation, json=[record])
        if isinstance(rows, list) and rows:
            return rows[0]
        raise BackendError(code="EMPTY_RESULT", message=f"insert into {relation} returned no rows")

    async def update(self, relation: str, record_id: str, patch: dict) -> dict | None:
        rows = await self._request("PATCH", relation, params={"id": f"eq.{record_id}"}, json=patch)
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    async def select_rows(
        self,
        relation: str,
        filters: dict | None = None,
        columns: list[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        params = {col: f"eq.{val}" for col, val in (filters or {}).items()}
        params["select"] = ",".join(columns) if columns else "*"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._request("GET", relation, params=params)
        return rows if isinstance(rows, list) else []
