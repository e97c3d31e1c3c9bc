"""
Migration Reconciler: move members from pre-core into a definite cohort.

Two paths per entry:
    - by secret: the member has not redeemed their credential yet, so only the
      stored record's cohort label changes (ciphertext untouched).
    - by name: the member was already admitted; find them on the platform by
      exact nick/username match, grant the cohort role and revoke pre-core.

A secret that no longer resolves (already redeemed) falls back to the name
path. Each entry yields one `MigrationOutcome`; a failing entry never stops
the run.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, List, Optional, Protocol

from bouncer.records.ports import RecordStoreProtocol

from .domain import IdentityRecord, Member, validate_cohort
from .errors import AmbiguousMatch, BouncerError, NotFound, UnknownCohort
from .resolver import CandidateResolver
from .roles import RoleCache

LOG = logging.getLogger(__name__)

UPDATED_RECORD = "updated_record"
MIGRATED_MEMBER = "migrated_member"
NOT_FOUND = "not_found"
ERROR = "error"


class MemberClientProtocol(Protocol):
    def search_members(self, guild_id: str, name: str, limit: int = 10) -> List[Member]:
        ...

    def grant_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        ...

    def revoke_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        ...


@dataclass(frozen=True)
class MigrationEntry:
    name: str = ""
    secret: Optional[str] = None


@dataclass(frozen=True)
class MigrationOutcome:
    entry: MigrationEntry
    status: str
    detail: str = ""

    def to_line(self) -> str:
        label = self.entry.name or "-"
        return f"{label}\t{self.status}\t{self.detail}".rstrip()


class MigrationReconciler:
    def __init__(
        self,
        resolver: CandidateResolver,
        store: RecordStoreProtocol,
        cache: RoleCache,
        client: MemberClientProtocol,
        *,
        search_limit: int = 10,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.cache = cache
        self.client = client
        self.search_limit = search_limit

    def migrate_by_secret(self, secret: str, cohort: str) -> IdentityRecord:
        """Relabel the stored record that `secret` opens.

        Raises:
            NotFound: no record authenticates (e.g. already redeemed).
            BadKey / BadCiphertext: malformed secret or corrupt record.
        """
        label = validate_cohort(cohort)
        record = self.resolver.resolve_record(secret.strip())
        self.store.update_cohort(record.id, label)
        LOG.info("migration.record_updated record_id=%s cohort=%s", record.id, label)
        return record.with_cohort(label)

    def migrate_member(self, name: str, cohort: str) -> Member:
        """Grant the cohort role to the one member named exactly `name`.

        Raises:
            CacheUninitialized: role taxonomy unavailable.
            UnknownCohort: the cohort has no role on the server.
            NotFound: no member matches; AmbiguousMatch: several do.
        """
        taxonomy = self.cache.ensure()
        role_id = taxonomy.cohorts.get(cohort)
        if not role_id:
            LOG.info("migration.unknown_cohort name=%s cohort=%s", name, cohort)
            raise UnknownCohort(cohort)

        guild_id = self.cache.guild_id
        found = self.client.search_members(guild_id, name, self.search_limit)
        matches = [m for m in found if m.matches_exactly(name)]
        if not matches:
            raise NotFound(f"no member named {name!r}")
        if len(matches) > 1:
            raise AmbiguousMatch(f"{len(matches)} members named {name!r}")

        member = matches[0]
        self.client.grant_role(guild_id, member.id, role_id)
        if taxonomy.pre_core:
            self.client.revoke_role(guild_id, member.id, taxonomy.pre_core)
        else:
            LOG.info("migration.pre_core_revoke_skipped member=%s", member.id)
        LOG.info("migration.member_migrated member=%s cohort=%s", member.id, cohort)
        return member

    def migrate_entry(self, entry: MigrationEntry, cohort: str) -> MigrationOutcome:
        try:
            if entry.secret:
                try:
                    record = self.migrate_by_secret(entry.secret, cohort)
                    return MigrationOutcome(entry, UPDATED_RECORD, f"record {record.id}")
                except NotFound:
                    LOG.info("migration.secret_unused name=%s; trying member search", entry.name or "-")
                    if not entry.name:
                        return MigrationOutcome(entry, NOT_FOUND, "no record for secret")
            if not entry.name:
                return MigrationOutcome(entry, ERROR, "entry has neither name nor secret")
            member = self.migrate_member(entry.name, cohort)
            return MigrationOutcome(entry, MIGRATED_MEMBER, f"member {member.id}")
        except (NotFound, AmbiguousMatch) as exc:
            return MigrationOutcome(entry, NOT_FOUND, str(exc))
        except BouncerError as exc:
            LOG.error("migration.entry_failed name=%s error=%s: %s", entry.name or "-", type(exc).__name__, exc)
            return MigrationOutcome(entry, ERROR, type(exc).__name__)

    def migrate(self, entries: Iterable[MigrationEntry], cohort: str) -> List[MigrationOutcome]:
        """Migrate every entry to `cohort`; raises ValueError on an invalid label."""
        label = validate_cohort(cohort)
        outcomes = [self.migrate_entry(entry, label) for entry in entries]
        counts: dict[str, int] = {}
        for o in outcomes:
            counts[o.status] = counts.get(o.status, 0) + 1
        LOG.info(
            "migration.done cohort=%s %s",
            label,
            " ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "entries=0",
        )
        return outcomes


__all__ = [
    "UPDATED_RECORD",
    "MIGRATED_MEMBER",
    "NOT_FOUND",
    "ERROR",
    "MemberClientProtocol",
    "MigrationEntry",
    "MigrationOutcome",
    "MigrationReconciler",
]
