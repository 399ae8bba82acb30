"""Supabase JWT auth middleware."""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


PUBLIC_PATHS = ("/health", "/favicon.ico", "/robots.txt")
SESSION_COOKIE = "sb-access-token"

_JWKS_CACHE: Dict[str, Any] = {"keys": None, "fetched_at": 0.0, "ttl": 600.0}
_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
logger = logging.getLogger("lifeos.auth")


def auth_disabled() -> bool:
    return os.getenv("LIFEOS_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def is_public_path(path: str) -> bool:
    return any(path == p or (p.endswith("/") and path.startswith(p)) for p in PUBLIC_PATHS)


def _cors_origins() -> set[str]:
    return {o.strip().rstrip("/") for o in os.getenv("LIFEOS_CORS_ORIGINS", "").split(",") if o.strip()}


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and (_LOCAL_ORIGIN_RE.match(origin) or origin.rstrip("/") in _cors_origins()):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


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


def get_session_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip() or None
    cookie = request.cookies.get(SESSION_COOKIE)
    return cookie.strip() if cookie and cookie.strip() else None


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


def _unauthorized(request: Request, code: str, message: str, detail: dict | None = None) -> JSONResponse:
    response = JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )
    return _attach_local_cors(request, response)


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Resolve the caller from a Supabase session token.

    Public paths and CORS preflights pass through. Everything else needs a
    valid token; the verified identity lands on ``request.state.user``.
    """

    def __init__(self, app, supabase_url: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._supabase_url = supabase_url.rstrip("/")
        self._audience = audience
        self._jwks_url = f"{self._supabase_url}/auth/v1/.well-known/jwks.json"
        self._issuer = f"{self._supabase_url}/auth/v1"

    async def dispatch(self, request: Request, call_next):
        if auth_disabled() or request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        token = get_session_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized(request, "AUTH_MISSING_TOKEN", "Missing session token")

        try:
            claims = verify_jwt(token, self._jwks_url, self._issuer, self._audience)
        except Exception as exc:
            logger.warning(
                "auth_invalid_token path=%s issuer=%s audience=%s error=%s",
                request.url.path,
                self._issuer,
                self._audience,
                exc,
            )
            return _unauthorized(request, "AUTH_INVALID_TOKEN", "Invalid session token", {"error": str(exc)})

        request.state.user = {
            "id": claims.get("sub"),
            "email": claims.get("email"),
            "role": claims.get("role"),
            "claims": claims,
        }
        return await call_next(request)
