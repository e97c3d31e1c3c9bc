"""
Users API routes: CRUD over sealed registration records.

Why:
    Operators upload records that were sealed on their own machine (the CLI
    encrypts locally), so the server only ever stores ciphertext and the
    lookup hash; the secret never crosses this API.

Permissions:
    Every route requires the admin bearer token (see `bouncer.web.security`).
"""
from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, field_validator

from bouncer.admission.domain import IdentityRecord, validate_cohort
from bouncer.admission.errors import NotFound
from bouncer.web.security import private_no_store, private_response, require_admin

users_router = APIRouter(tags=["Users"])
logger = logging.getLogger(__name__)

_HEX = re.compile(r"^[0-9a-fA-F]+$")
_HASH = re.compile(r"^[0-9a-f]{32}$")


class UserPayload(BaseModel):
    name: str = Field(..., min_length=2, description="hex(nonce) + hex(sealed name)")
    name_key_hash: str = Field(..., min_length=32, max_length=32)
    cohort: str = Field(default="", max_length=64)
    professor: bool = False
    ta: bool = False
    student_leadership: bool = False
    alumni_board: bool = False

    @field_validator("name")
    @classmethod
    def _hex_name(cls, v: str) -> str:
        v = v.strip()
        if not _HEX.match(v) or len(v) % 2:
            raise ValueError("name must be an even-length hex string")
        return v

    @field_validator("name_key_hash")
    @classmethod
    def _hex_hash(cls, v: str) -> str:
        v = v.strip().lower()
        if not _HASH.match(v):
            raise ValueError("name_key_hash must be 32 hex characters")
        return v

    def to_record(self, record_id: int = 0) -> IdentityRecord:
        return IdentityRecord(
            id=record_id,
            encrypted_name=self.name,
            lookup_hash=self.name_key_hash,
            cohort=validate_cohort(self.cohort),
            professor=self.professor,
            ta=self.ta,
            student_leadership=self.student_leadership,
            alumni_board=self.alumni_board,
        )


def _store(request: Request):
    return request.app.state.store


def _not_found() -> JSONResponse:
    return private_response({"error": "not_found"}, status_code=404)


def _invalid_cohort() -> JSONResponse:
    return private_response({"error": "bad_request", "detail": "invalid_cohort"}, status_code=400)


@users_router.get("/api/users")
async def list_users(request: Request, keyHash: str | None = None):
    """List records, optionally narrowed to one lookup hash."""
    error = require_admin(request)
    if error:
        return error
    if keyHash is not None:
        records = _store(request).find_by_lookup_hash(keyHash.strip().lower())
    else:
        records = _store(request).list_records()
    return private_response([r.to_dict() for r in records], status_code=200)


@users_router.get("/api/users/{user_id}")
async def get_user(request: Request, user_id: int):
    error = require_admin(request)
    if error:
        return error
    try:
        record = _store(request).find_by_id(user_id)
    except NotFound:
        return _not_found()
    return private_response(record.to_dict(), status_code=200)


@users_router.post("/api/users")
async def create_user(request: Request, payload: UserPayload):
    """Store a sealed record.

    Behavior:
        - 201 with `{"id": ...}` on success
        - 400 on an invalid cohort label
    """
    error = require_admin(request)
    if error:
        return error
    try:
        record = payload.to_record()
    except ValueError:
        return _invalid_cohort()
    record_id = _store(request).create(record)
    logger.info("users.created record_id=%s cohort=%s", record_id, record.cohort or "-")
    return private_response({"id": record_id}, status_code=201)


@users_router.put("/api/users/{user_id}")
async def update_user(request: Request, user_id: int, payload: UserPayload):
    error = require_admin(request)
    if error:
        return error
    try:
        record = payload.to_record(user_id)
    except ValueError:
        return _invalid_cohort()
    try:
        _store(request).update(record)
    except NotFound:
        return _not_found()
    logger.info("users.updated record_id=%s", user_id)
    return private_response(record.to_dict(), status_code=200)


@users_router.delete("/api/users/{user_id}")
async def delete_user(request: Request, user_id: int):
    error = require_admin(request)
    if error:
        return error
    try:
        _store(request).delete(user_id)
    except NotFound:
        return _not_found()
    logger.info("users.deleted record_id=%s", user_id)
    return Response(status_code=204, headers=private_no_store())
