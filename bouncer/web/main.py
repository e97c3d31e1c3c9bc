"""
Admin HTTP API application factory.

`create_app` wires the record store (and, when the bot runs, the migration
reconciler and role cache) onto `app.state`; routes read them from there so
tests can build an app around in-memory fakes.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request

from bouncer import telemetry
from bouncer.admission.migration import MigrationReconciler
from bouncer.admission.roles import RoleCache
from bouncer.records.ports import RecordStoreProtocol
from bouncer.web.routes.discord import discord_router
from bouncer.web.routes.users import users_router
from bouncer.web.security import private_response

logger = logging.getLogger(__name__)


def create_app(
    store: RecordStoreProtocol,
    *,
    reconciler: Optional[MigrationReconciler] = None,
    cache: Optional[RoleCache] = None,
    admin_token: str = "",
) -> FastAPI:
    app = FastAPI(title="disco-bouncer", description="Admission records and migration API", version="1.0.0")
    app.state.store = store
    app.state.reconciler = reconciler
    app.state.cache = cache
    app.state.admin_token = admin_token

    app.include_router(users_router)
    app.include_router(discord_router)

    @app.get("/healthz")
    async def healthz(request: Request):
        """Liveness plus bot state; no authentication, no record data."""
        role_cache = request.app.state.cache
        body = {
            "status": "ok",
            "bot": request.app.state.reconciler is not None,
            "rolesInitialized": bool(role_cache and role_cache.initialized),
            "metrics": telemetry.summary(),
        }
        return private_response(body, status_code=200)

    if not admin_token:
        logger.warning("web.admin_token_missing; admin routes will answer 503")
    return app


__all__ = ["create_app"]
