"""
In-memory record store for development and tests.

Why: Exercise the admission flow without Postgres. For production use
`bouncer.records.stores_db.DBRecordStore`.
"""
from __future__ import annotations

from dataclasses import replace
from threading import Lock
from typing import Dict, List

from bouncer.admission.domain import IdentityRecord
from bouncer.admission.errors import NotFound


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._data: Dict[int, IdentityRecord] = {}
        self._next_id = 1
        self._lock = Lock()

    def create(self, record: IdentityRecord) -> int:
        with self._lock:
            new_id = self._next_id
            self._next_id += 1
            self._data[new_id] = replace(record, id=new_id)
        return new_id

    def list_records(self) -> List[IdentityRecord]:
        with self._lock:
            return [self._data[k] for k in sorted(self._data)]

    def find_by_lookup_hash(self, lookup_hash: str) -> List[IdentityRecord]:
        with self._lock:
            return [self._data[k] for k in sorted(self._data) if self._data[k].lookup_hash == lookup_hash]

    def find_by_id(self, record_id: int) -> IdentityRecord:
        with self._lock:
            rec = self._data.get(record_id)
        if rec is None:
            raise NotFound(f"record {record_id}")
        return rec

    def update(self, record: IdentityRecord) -> None:
        with self._lock:
            if record.id not in self._data:
                raise NotFound(f"record {record.id}")
            self._data[record.id] = record

    def update_cohort(self, record_id: int, cohort: str) -> None:
        with self._lock:
            rec = self._data.get(record_id)
            if rec is None:
                raise NotFound(f"record {record_id}")
            self._data[record_id] = rec.with_cohort(cohort)

    def delete(self, record_id: int) -> None:
        with self._lock:
            if self._data.pop(record_id, None) is None:
                raise NotFound(f"record {record_id}")
