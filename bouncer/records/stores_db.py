"""
Database-backed record store (Postgres via psycopg3).

Why: Registration records must survive restarts and be shared by the bot and
the operator tools. The table holds only ciphertext, the lookup hash, the
cohort label and the category flags; plaintext names are never stored.

Security:
- Use a login role limited to the `users` table.
- Success of writes is decided by `rowcount == 1`, not by the absence of an
  exception.

Note: Each call opens a short-lived connection bounded by `connect_timeout`.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Any, List, Optional, Sequence

import psycopg
from psycopg import sql

from bouncer.admission.domain import IdentityRecord
from bouncer.admission.errors import NotFound

LOG = logging.getLogger(__name__)

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")

_FIELDS = (
    "name",
    "name_key_hash",
    "cohort",
    "professor",
    "ta",
    "student_leadership",
    "alumni_board",
)

SCHEMA_DDL = """
create table if not exists {table} (
    id serial primary key,
    name text not null,
    name_key_hash text not null,
    cohort text not null default '',
    professor boolean not null default false,
    ta boolean not null default false,
    student_leadership boolean not null default false,
    alumni_board boolean not null default false
)
"""

INDEX_DDL = "create index if not exists {index} on {table} (name_key_hash)"


def _row_to_record(row: Sequence[Any]) -> IdentityRecord:
    return IdentityRecord(
        id=int(row[0]),
        encrypted_name=str(row[1]),
        lookup_hash=str(row[2]),
        cohort=str(row[3] or ""),
        professor=bool(row[4]),
        ta=bool(row[5]),
        student_leadership=bool(row[6]),
        alumni_board=bool(row[7]),
    )


def _record_values(record: IdentityRecord) -> tuple:
    return (
        record.encrypted_name,
        record.lookup_hash,
        record.cohort,
        record.professor,
        record.ta,
        record.student_leadership,
        record.alumni_board,
    )


class DBRecordStore:
    """Postgres-backed record store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Defaults to `DATABASE_URL`.
    table:
        Table name, optionally schema-qualified. Defaults to `public.users`.
    connect_timeout:
        Seconds to wait for a connection before failing the operation.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.users", connect_timeout: int = 5) -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBRecordStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table
        self._connect_timeout = connect_timeout

    def _ident(self) -> sql.Composable:
        if "." in self._table:
            schema, name = self._table.split(".", 1)
            return sql.Identifier(schema, name)
        return sql.Identifier(self._table)

    def _connect(self, *, autocommit: bool = False) -> psycopg.Connection:
        return psycopg.connect(self._dsn, autocommit=autocommit, connect_timeout=self._connect_timeout)

    def _select(self, where: Optional[sql.Composable], params: tuple) -> List[IdentityRecord]:
        stmt = sql.SQL("select id, {fields} from {table}").format(
            fields=sql.SQL(", ").join(sql.Identifier(f) for f in _FIELDS),
            table=self._ident(),
        )
        if where is not None:
            stmt = stmt + sql.SQL(" where ") + where
        stmt = stmt + sql.SQL(" order by id")
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, params)
                rows = cur.fetchall()
        return [_row_to_record(r) for r in rows]

    def _execute_one(self, stmt: sql.Composable, params: tuple, *, record_id: int, action: str) -> None:
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, params)
                affected = cur.rowcount
        if affected != 1:
            LOG.info("records.%s.no_match id=%s rowcount=%s", action, record_id, affected)
            raise NotFound(f"record {record_id}")
        LOG.debug("records.%s id=%s", action, record_id)

    def apply_schema(self) -> None:
        """Create the table and the lookup-hash index when missing."""
        index_name = self._table.rsplit(".", 1)[-1] + "_name_key_hash_idx"
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(sql.SQL(SCHEMA_DDL).format(table=self._ident()))
                cur.execute(sql.SQL(INDEX_DDL).format(index=sql.Identifier(index_name), table=self._ident()))

    def list_records(self) -> List[IdentityRecord]:
        return self._select(None, ())

    def find_by_lookup_hash(self, lookup_hash: str) -> List[IdentityRecord]:
        records = self._select(sql.SQL("name_key_hash = %s"), (lookup_hash,))
        LOG.debug("records.find_by_lookup_hash hash=%s count=%d", lookup_hash, len(records))
        return records

    def find_by_id(self, record_id: int) -> IdentityRecord:
        records = self._select(sql.SQL("id = %s"), (record_id,))
        if not records:
            LOG.info("records.find_by_id.no_match id=%s", record_id)
            raise NotFound(f"record {record_id}")
        return records[0]

    def create(self, record: IdentityRecord) -> int:
        stmt = sql.SQL("insert into {table} ({fields}) values ({values}) returning id").format(
            table=self._ident(),
            fields=sql.SQL(", ").join(sql.Identifier(f) for f in _FIELDS),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in _FIELDS),
        )
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, _record_values(record))
                row = cur.fetchone()
        if not row:
            raise RuntimeError("insert returned no id")
        new_id = int(row[0])
        LOG.debug("records.create id=%s", new_id)
        return new_id

    def update(self, record: IdentityRecord) -> None:
        stmt = sql.SQL("update {table} set {sets} where id = %s").format(
            table=self._ident(),
            sets=sql.SQL(", ").join(
                sql.SQL("{} = %s").format(sql.Identifier(f)) for f in _FIELDS
            ),
        )
        self._execute_one(stmt, _record_values(record) + (record.id,), record_id=record.id, action="update")

    def update_cohort(self, record_id: int, cohort: str) -> None:
        stmt = sql.SQL("update {table} set cohort = %s where id = %s").format(table=self._ident())
        self._execute_one(stmt, (cohort, record_id), record_id=record_id, action="update_cohort")

    def delete(self, record_id: int) -> None:
        stmt = sql.SQL("delete from {table} where id = %s").format(table=self._ident())
        self._execute_one(stmt, (record_id,), record_id=record_id, action="delete")
