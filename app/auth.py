"""Supabase JWT verification for the record service."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from typing import Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


JWKS_TTL_SECONDS = 600.0
_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_PUBLIC_PATHS = frozenset({"/health"})

logger = logging.getLogger("certflow.auth")


def auth_disabled() -> bool:
    return os.getenv("CERTFLOW_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def claims_to_user(claims: dict) -> dict:
    """The request.state.user shape read by actor resolution."""
    metadata = claims.get("user_metadata") if isinstance(claims.get("user_metadata"), dict) else {}
    return {
        "id": claims.get("sub"),
        "email": claims.get("email") or metadata.get("email"),
        "role": claims.get("role"),
    }


class JwksCache:
    """Signing keys for one issuer, refetched after the TTL or on an unknown kid."""

    def __init__(self, url: str, ttl: float = JWKS_TTL_SECONDS) -> None:
        self.url = url
        self.ttl = ttl
        self._keys: dict[str, dict] = {}
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def _refetch(self) -> None:
        resp = httpx.get(self.url, timeout=10.0)
        resp.raise_for_status()
        keys = {jwk.get("kid"): jwk for jwk in resp.json().get("keys", []) if isinstance(jwk, dict)}
        with self._lock:
            self._keys = keys
            self._fetched_at = time.time()
        logger.info("jwks_fetched url=%s keys=%s", self.url, len(keys))

    def key_for(self, kid: str | None) -> dict | None:
        with self._lock:
            stale = not self._keys or time.time() - self._fetched_at >= self.ttl
            key = None if stale else self._keys.get(kid)
        if key is not None:
            return key
        self._refetch()
        with self._lock:
            return self._keys.get(kid)


def _unauthorized(request: Request, code: str, message: str, detail: dict | None = None) -> JSONResponse:
    response = JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )
    # The CORS middleware does not see responses short-circuited here.
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Vary", "Origin")
    return response


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, supabase_url: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        base = supabase_url.rstrip("/")
        self._issuer = f"{base}/auth/v1"
        self._audience = audience
        self._jwks = JwksCache(f"{self._issuer}/.well-known/jwks.json")

    def verify(self, token: str) -> dict:
        header = jwt.get_unverified_header(token)
        key = self._jwks.key_for(header.get("kid"))
        if key is None:
            raise JWTError("Signing key not found")
        return jwt.decode(
            token,
            key,
            algorithms=[header.get("alg") or "RS256"],
            issuer=self._issuer,
            audience=self._audience,
            options={"verify_aud": self._audience is not None},
        )

    async def dispatch(self, request: Request, call_next):
        if auth_disabled() or request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        token = bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized(request, "AUTH_REQUIRED", "Sign in to continue")
        try:
            claims = self.verify(token)
        except (JWTError, httpx.HTTPError) as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _unauthorized(request, "AUTH_INVALID_TOKEN", "Your session is invalid or has expired", {"error": str(exc)})

        user = claims_to_user(claims)
        if not user["id"]:
            return _unauthorized(request, "AUTH_INVALID_TOKEN", "Token has no subject")
        request.state.user = user
        return await call_next(request)
