"""Supabase JWT auth middleware and the session identity the workflow reads."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_JWKS_CACHE: Dict[str, Any] = {"keys": None, "fetched_at": 0.0, "ttl": 600.0}
logger = logging.getLogger("pawlog.auth")
DEV_USER_HEADER = "X-Pawlog-User"


def auth_disabled() -> bool:
    return os.getenv("PAWLOG_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


class SessionIdentity:
    """Acting identity for one form; `owner_id` is None once cleared."""

    def __init__(self, user_id: str | None = None, access_token: str | None = None, claims: dict | None = None) -> None:
        self._user_id = user_id or None
        self.access_token = access_token
        self.claims = claims or {}

    @property
    def owner_id(self) -> str | None:
        return self._user_id

    def clear(self) -> None:
        self._user_id = None
        self.access_token = None
        self.claims = {}

    @classmethod
    def from_request(cls, request: Request) -> "SessionIdentity":
        user = getattr(request.state, "user", None)
        if not isinstance(user, dict):
            return cls()
        return cls(user.get("id"), access_token=user.get("token"), claims=user.get("claims"))


def _fetch_jwks(jwks_url: str, force: bool = False) -> dict:
    now = time.time()
    if not force and _JWKS_CACHE["keys"] and now - _JWKS_CACHE["fetched_at"] < _JWKS_CACHE["ttl"]:
        return _JWKS_CACHE["keys"]
    resp = httpx.get(jwks_url, timeout=10.0)
    resp.raise_for_status()
    data = resp.json()
    _JWKS_CACHE["keys"] = data
    _JWKS_CACHE["fetched_at"] = now
    return data


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _find_key(jwks: dict, kid: str | None) -> dict | None:
    for jwk in jwks.get("keys", []):
        if jwk.get("kid") == kid:
            return jwk
    return None


def verify_jwt(token: str, jwks_url: str, issuer: str, audience: Optional[str]) -> dict:
    headers = jwt.get_unverified_header(token)
    kid = headers.get("kid")
    key = _find_key(_fetch_jwks(jwks_url), kid)
    if key is None:
        key = _find_key(_fetch_jwks(jwks_url, force=True), kid)
    if key is None:
        raise JWTError("Unknown kid")

    options = {"verify_aud": audience is not None}
    return jwt.decode(token, key, algorithms=[headers.get("alg", "RS256")], issuer=issuer, audience=audience, options=options)


def _unauthorized(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, supabase_url: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._supabase_url = supabase_url.rstrip("/")
        self._audience = audience
        self._jwks_url = f"{self._supabase_url}/auth/v1/.well-known/jwks.json"
        self._issuer = f"{self._supabase_url}/auth/v1"

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path in {"/health"} or request.url.path.startswith("/media/"):
            return await call_next(request)
        if auth_disabled():
            dev_user = request.headers.get(DEV_USER_HEADER, "").strip()
            request.state.user = {"id": dev_user or None, "token": None, "claims": {}}
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized("AUTH_MISSING_TOKEN", "Missing bearer token")

        try:
            claims = verify_jwt(token, self._jwks_url, self._issuer, self._audience)
        except (JWTError, httpx.HTTPError) as exc:
            logger.warning(
                "auth_invalid_token path=%s issuer=%s audience=%s error=%s",
                request.url.path,
                self._issuer,
                self._audience,
                exc,
            )
            return _unauthorized("AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = {"id": claims.get("sub"), "token": token, "claims": claims}
        return await call_next(request)
