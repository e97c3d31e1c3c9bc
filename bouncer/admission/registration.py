"""Registration: seal a new identity and store it, returning the member's secret."""

from __future__ import annotations

import logging
from typing import Tuple

from bouncer.records.ports import RecordStoreProtocol

from . import credentials
from .domain import Identity, IdentityRecord, validate_cohort

LOG = logging.getLogger(__name__)


def build_record(identity: Identity) -> Tuple[IdentityRecord, str]:
    """Encrypt the identity's name and return the unsaved record plus its secret."""
    cohort = validate_cohort(identity.cohort)
    if not identity.name.strip():
        raise ValueError("invalid_name")
    ciphertext, secret = credentials.encrypt(identity.name)
    record = IdentityRecord(
        id=0,
        encrypted_name=ciphertext,
        lookup_hash=credentials.lookup_hash(secret),
        cohort=cohort,
        professor=identity.professor,
        ta=identity.ta,
        student_leadership=identity.student_leadership,
        alumni_board=identity.alumni_board,
    )
    return record, secret


def register(store: RecordStoreProtocol, identity: Identity) -> Tuple[int, str]:
    """Store a sealed record for `identity`.

    Returns:
        (record_id, secret). The secret is not kept anywhere server-side;
        losing it means re-registering the member.
    """
    record, secret = build_record(identity)
    record_id = store.create(record)
    LOG.info("registration.created record_id=%s cohort=%s", record_id, record.cohort or "-")
    return record_id, secret


__all__ = ["build_record", "register"]
