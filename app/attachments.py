from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import quote

import anyio
import httpx

from app.rest_store import http_timeout
from pawlog.errors import BackendError, TRANSPORT_CODE


logger = logging.getLogger("pawlog.storage")


def _supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def _supabase_storage_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY") or "").strip()


def _supabase_enabled() -> bool:
    return bool(_supabase_url() and _supabase_storage_key())


def using_supabase_storage() -> bool:
    return _supabase_enabled()


def media_bucket(default: str = "avatars") -> str:
    return (os.getenv("PAWLOG_MEDIA_BUCKET") or default).strip()


def _storage_root() -> Path:
    root = os.getenv("PAWLOG_STORAGE_DIR", "storage")
    return Path(root)


def _public_base_url() -> str:
    return (os.getenv("PAWLOG_PUBLIC_URL") or "http://localhost:8000").strip().rstrip("/")


LOCAL_MEDIA_PREFIX = "/media"


def _supabase_headers(key: str, access_token: str | None = None, content_type: str | None = None) -> dict:
    headers = {
        "Authorization": f"Bearer {access_token or key}",
        "apikey": key,
        "x-upsert": "true",
    }
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def public_url(base_url: str, bucket: str, storage_key: str) -> str:
    path = quote(storage_key, safe="/")
    return f"{base_url.rstrip('/')}/storage/v1/object/public/{bucket}/{path}"


class SupabaseObjectStorage:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or _supabase_url()).rstrip("/")
        self._api_key = api_key if api_key is not None else _supabase_storage_key()
        self._access_token = access_token
        self._timeout = timeout if timeout is not None else http_timeout()
        self._transport = transport

    def with_token(self, access_token: str | None) -> "SupabaseObjectStorage":
        return SupabaseObjectStorage(
            base_url=self._base_url,
            api_key=self._api_key,
            access_token=access_token,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def upload(self, bucket: str, storage_key: str, data: bytes, content_type: str | None = None) -> str:
        path = quote(storage_key, safe="/")
        url = f"{self._base_url}/storage/v1/object/{bucket}/{path}"
        headers = _supabase_headers(self._api_key, self._access_token, content_type)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                res = await client.post(url, headers=headers, content=data)
            except httpx.HTTPError as exc:
                raise BackendError(code=TRANSPORT_CODE, message=str(exc) or exc.__class__.__name__) from exc
        if res.status_code >= 400:
            code = f"STORAGE_{res.status_code}"
            try:
                body = res.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("statusCode"):
                code = f"STORAGE_{body.get('statusCode')}"
            raise BackendError(code=code, message=f"supabase_upload_failed:{res.status_code}:{res.text[:300]}", status=res.status_code)
        return public_url(self._base_url, bucket, storage_key)


def _safe_key(storage_key: str) -> str:
    return storage_key.replace("..", "_")


class LocalObjectStorage:
    """Disk-backed storage for development when Supabase Storage is not configured.

    Files are served by the app itself under LOCAL_MEDIA_PREFIX.
    """

    def __init__(self, root: str | Path | None = None, public_base_url: str | None = None) -> None:
        self._root = Path(root) if root is not None else _storage_root()
        self._public_base_url = (public_base_url or _public_base_url()).rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def with_token(self, access_token: str | None) -> "LocalObjectStorage":
        return self

    def _write(self, bucket: str, storage_key: str, data: bytes) -> Path:
        safe_key = _safe_key(storage_key)
        path_obj = self._root / bucket / safe_key
        path_obj.parent.mkdir(parents=True, exist_ok=True)
        path_obj.write_bytes(data)
        return path_obj

    async def upload(self, bucket: str, storage_key: str, data: bytes, content_type: str | None = None) -> str:
        try:
            path_obj = await anyio.to_thread.run_sync(self._write, bucket, storage_key, data)
        except OSError as exc:
            raise BackendError(code="STORAGE_IO", message=str(exc)) from exc
        logger.info("local_upload path=%s size=%s", path_obj, len(data))
        return f"{self._public_base_url}{LOCAL_MEDIA_PREFIX}/{bucket}/{quote(_safe_key(storage_key), safe='/')}"


def default_storage():
    if _supabase_enabled():
        return SupabaseObjectStorage()
    return LocalObjectStorage()
