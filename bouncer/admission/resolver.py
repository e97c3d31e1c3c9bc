"""
Candidate resolution: secret → exactly one stored record.

Why:
    Decrypting every record with every submitted secret does not scale, so the
    store is first narrowed by the weak lookup hash. The hash can collide,
    which is why each candidate is still authenticated by an AES-GCM decrypt.

Behavior:
    - `Inauthentic` on a candidate is expected (hash collision): try the next.
    - Any other decrypt error aborts resolution and propagates.
    - The first candidate that authenticates wins; at most one match per call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from bouncer.records.ports import RecordStoreProtocol

from . import credentials
from .domain import Identity, IdentityRecord
from .errors import Inauthentic, NotFound

LOG = logging.getLogger(__name__)


@dataclass
class CandidateResolver:
    """Resolve submitted secrets against the record store."""

    store: RecordStoreProtocol

    def _authenticate(self, secret: str) -> Tuple[IdentityRecord, str]:
        token = credentials.lookup_hash(secret)
        candidates = self.store.find_by_lookup_hash(token)
        LOG.debug("resolver.candidates hash=%s count=%d", token, len(candidates))
        for record in candidates:
            try:
                name = credentials.decrypt(record.encrypted_name, secret)
            except Inauthentic:
                LOG.debug("resolver.hash_collision record_id=%s", record.id)
                continue
            return record, name
        raise NotFound("no record authenticates under this secret")

    def resolve(self, secret: str) -> Tuple[Identity, int]:
        """Return the plaintext identity and the id of the record it came from.

        Raises:
            BadKey: the secret is malformed.
            BadCiphertext: a candidate record holds a corrupt ciphertext.
            NotFound: no candidate authenticates.
        """
        record, name = self._authenticate(secret)
        return record.reveal(name), record.id

    def resolve_record(self, secret: str) -> IdentityRecord:
        """Return the stored record (ciphertext untouched) that `secret` opens."""
        record, _ = self._authenticate(secret)
        return record


__all__ = ["CandidateResolver"]
