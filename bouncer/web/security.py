"""
Admin API guard and response helpers.

The admin API is operator tooling, not a user-facing surface: a single static
bearer token (`ADMIN_API_TOKEN`) authorizes every route. Without a configured
token the API refuses all requests instead of running open.
"""
from __future__ import annotations

import secrets

from fastapi import Request
from fastapi.responses import JSONResponse


def private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def private_response(body, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=private_no_store())


def _bearer(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return value.strip()


def require_admin(request: Request) -> JSONResponse | None:
    """Return an error response unless the caller presents the admin token.

    - 503 when no token is configured
    - 401 when the token is missing or wrong (constant-time compare)
    """
    expected = getattr(request.app.state, "admin_token", "") or ""
    if not expected:
        return private_response({"error": "admin_api_disabled"}, status_code=503)
    presented = _bearer(request)
    if not presented or not secrets.compare_digest(presented.encode(), expected.encode()):
        return private_response({"error": "unauthenticated"}, status_code=401)
    return None
