"""Discord operations: migrate an admitted member to a cohort role."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from bouncer.admission.errors import (
    AmbiguousMatch,
    CacheUninitialized,
    ExternalError,
    NotFound,
    UnknownCohort,
)
from bouncer.web.security import private_response, require_admin

discord_router = APIRouter(tags=["Discord"])
logger = logging.getLogger(__name__)


class MigrationPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    role: str = Field(..., min_length=1, max_length=64, description="cohort label, e.g. 2026")


@discord_router.post("/api/discord/migrate")
async def migrate_member(request: Request, payload: MigrationPayload):
    """Grant the cohort role to the member named exactly `name`.

    Behavior:
        - 200 with the member id on success
        - 400 when the cohort has no role on the server
        - 404 when no member matches, 409 when several do
        - 502 on platform failure, 503 when the bot is not running
    """
    error = require_admin(request)
    if error:
        return error
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        return private_response({"error": "bot_disabled"}, status_code=503)
    try:
        member = reconciler.migrate_member(payload.name.strip(), payload.role.strip())
    except UnknownCohort:
        return private_response({"error": "bad_request", "detail": "unknown_cohort"}, status_code=400)
    except NotFound:
        return private_response({"error": "not_found"}, status_code=404)
    except AmbiguousMatch:
        return private_response({"error": "conflict", "detail": "ambiguous_name"}, status_code=409)
    except (ExternalError, CacheUninitialized) as exc:
        logger.error("discord.migrate_failed name=%s error=%s: %s", payload.name, type(exc).__name__, exc)
        return private_response({"error": "bad_gateway"}, status_code=502)
    return private_response({"id": member.id, "cohort": payload.role.strip()}, status_code=200)
