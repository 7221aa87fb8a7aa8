"""Bearer JWT auth middleware for the API."""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_OPEN_PATHS = {"/health"}

logger = logging.getLogger("agentkit.auth")


def auth_disabled() -> bool:
    return os.getenv("AGENTKIT_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _with_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    # the CORS middleware never sees responses produced here
    origin = request.headers.get("origin") or ""
    if not _LOCAL_ORIGIN_RE.match(origin):
        return response
    for name, value in (
        ("Access-Control-Allow-Origin", origin),
        ("Access-Control-Allow-Credentials", "true"),
        ("Access-Control-Allow-Headers", "*"),
        ("Access-Control-Allow-Methods", "*"),
        ("Vary", "Origin"),
    ):
        response.headers.setdefault(name, value)
    return response


def _bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer":
        return None
    return token.strip() or None


def _user_from_claims(claims: dict) -> dict:
    return {"id": claims.get("sub"), "email": claims.get("email"), "role": claims.get("role"), "claims": claims}


DEV_USER = {"id": "dev", "email": None, "role": "admin", "claims": {}}


def _auth_error(request: Request, code: str, message: str, detail: dict | None = None) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
        "warnings": [],
    }
    return _with_local_cors(request, JSONResponse(body, status_code=401))


def issue_token(subject: str, secret: str, audience: Optional[str] = None, ttl_s: int = 3600, **claims) -> str:
    now = int(time.time())
    payload = {"sub": subject, "iat": now, "exp": now + ttl_s, **claims}
    if audience:
        payload["aud"] = audience
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)


class JwtAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, secret: str, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._secret = secret
        self._audience = audience

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if auth_disabled():
            request.state.user = dict(DEV_USER)
            return await call_next(request)
        if request.method == "OPTIONS" or request.url.path in _OPEN_PATHS:
            return await call_next(request)

        token = _bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _auth_error(request, "AUTH_MISSING_TOKEN", "Missing bearer token")
        if not self._secret:
            logger.warning("auth_not_configured path=%s", request.url.path)
            return _auth_error(request, "AUTH_NOT_CONFIGURED", "JWT secret is not configured")

        try:
            claims = verify_token(token, self._secret, self._audience)
        except JWTError as exc:
            logger.warning("auth_invalid_token path=%s audience=%s error=%s", request.url.path, self._audience, exc)
            return _auth_error(request, "AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = _user_from_claims(claims)
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
