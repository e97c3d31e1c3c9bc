"""
Record Store port consumed by the admission core.

Contract:
    - `NotFound` is raised (never returned) when the addressed record does not
      exist; transport/operational failures surface as the adapter's own
      exceptions.
    - Writes succeed only when exactly one row was affected.
"""

from __future__ import annotations

from typing import List, Protocol

from bouncer.admission.domain import IdentityRecord


class RecordStoreProtocol(Protocol):
    def find_by_lookup_hash(self, lookup_hash: str) -> List[IdentityRecord]:
        ...

    def find_by_id(self, record_id: int) -> IdentityRecord:
        ...

    def update_cohort(self, record_id: int, cohort: str) -> None:
        ...

    def delete(self, record_id: int) -> None:
        ...

    def create(self, record: IdentityRecord) -> int:
        ...

    def update(self, record: IdentityRecord) -> None:
        ...

    def list_records(self) -> List[IdentityRecord]:
        ...


__all__ = ["RecordStoreProtocol"]
