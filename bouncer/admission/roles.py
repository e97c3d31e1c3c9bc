"""
Role Cache: local snapshot of the guild's role taxonomy.

Why:
    Admission needs to map an identity (cohort label + category flags) to the
    guild's opaque role IDs on every redeemed secret. Listing roles on every
    event would be slow and rate-limited, so a snapshot is kept in memory and
    rebuilt wholesale whenever the platform reports a role change.

Design:
    - `build_taxonomy` is a pure function from a role list to an immutable
      `RoleTaxonomy`; it never fails on missing roles, it only warns.
    - `RoleCache` owns the current snapshot behind a read/write lock. The
      role list is fetched and the new snapshot built outside the lock; the
      exclusive side is held only for the reference swap, so readers never
      see a half-built map and are never blocked by the network call.
    - States: uninitialized (no snapshot) → populated. A rebuild replaces the
      populated snapshot; there is no stale state.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
import re
from threading import Condition, Lock
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence

from bouncer import telemetry

from .domain import PRE_CORE, Identity, Role, is_pre_core
from .errors import BouncerError, CacheUninitialized

LOG = logging.getLogger(__name__)

# Leading "2016 β" / "2026w cohort", or trailing "Class (2019)".
_LEADING_COHORT = re.compile(r"^(\d{4}[A-Za-z]*)(?:\s|$)")
_TRAILING_COHORT = re.compile(r"\((\d{4})\)$")


@dataclass(frozen=True)
class CategoryNames:
    """Exact (case-sensitive) role names of the fixed categories."""

    professor: str = "professor"
    ta: str = "TA"
    student_leadership: str = "student leadership"
    alumni_board: str = "alumni board"
    newbie: str = "newbie"
    pre_core: str = "pre-core"

    def by_name(self) -> Dict[str, str]:
        return {
            self.professor: "professor",
            self.ta: "ta",
            self.student_leadership: "student_leadership",
            self.alumni_board: "alumni_board",
            self.newbie: "newbie",
            self.pre_core: "pre_core",
        }


CATEGORIES = ("professor", "ta", "student_leadership", "alumni_board", "newbie", "pre_core")


def cohort_label(role_name: str) -> Optional[str]:
    """Return the cohort label encoded in a role name, or None."""
    m = _LEADING_COHORT.match(role_name)
    if m:
        return m.group(1)
    m = _TRAILING_COHORT.search(role_name)
    if m:
        return m.group(1)
    return None


@dataclass(frozen=True)
class RoleTaxonomy:
    """Immutable snapshot of category and cohort role IDs for one guild.

    Missing categories hold "" and are treated as "no such grant".
    """

    guild_id: str
    professor: str = ""
    ta: str = ""
    student_leadership: str = ""
    alumni_board: str = ""
    newbie: str = ""
    pre_core: str = ""
    cohorts: Dict[str, str] = field(default_factory=dict)

    def roles_for(self, identity: Identity) -> List[str]:
        """Role IDs to grant `identity`, in a fixed order.

        Order: cohort (or pre-core) slot first, then professor, TA, student
        leadership, alumni board.
        """
        out: List[str] = []
        label = (identity.cohort or "").strip()
        if label and label != PRE_CORE:
            role_id = self.cohorts.get(label)
            if role_id:
                out.append(role_id)
            else:
                LOG.info("roles.no_cohort_role cohort=%s", label)
        elif is_pre_core(label, professor=identity.professor):
            if self.pre_core:
                out.append(self.pre_core)
            else:
                LOG.info("roles.no_category_role category=pre_core")

        flags = (
            (identity.professor, "professor", self.professor),
            (identity.ta, "ta", self.ta),
            (identity.student_leadership, "student_leadership", self.student_leadership),
            (identity.alumni_board, "alumni_board", self.alumni_board),
        )
        for wanted, category, role_id in flags:
            if not wanted:
                continue
            if role_id:
                out.append(role_id)
            else:
                LOG.info("roles.no_category_role category=%s", category)
        return out

    def missing_categories(self) -> List[str]:
        return [c for c in CATEGORIES if not getattr(self, c)]

    def to_dict(self) -> dict:
        data = {"guild_id": self.guild_id}
        for c in CATEGORIES:
            data[c] = getattr(self, c)
        data["cohorts"] = dict(sorted(self.cohorts.items()))
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RoleTaxonomy":
        kwargs = {c: str(data.get(c) or "") for c in CATEGORIES}
        cohorts = {str(k): str(v) for k, v in (data.get("cohorts") or {}).items()}
        return cls(guild_id=str(data.get("guild_id") or ""), cohorts=cohorts, **kwargs)


def build_taxonomy(roles: Sequence[Role], guild_id: str, names: CategoryNames | None = None) -> RoleTaxonomy:
    """Build a snapshot from the guild's full role list.

    Category names are matched exactly first; otherwise the cohort pattern is
    tried. Roles matching neither are ignored. Missing categories are logged,
    not raised.
    """
    names = names or CategoryNames()
    lookup = names.by_name()
    found: Dict[str, str] = {}
    cohorts: Dict[str, str] = {}
    for role in roles:
        category = lookup.get(role.name)
        if category:
            found[category] = role.id
            continue
        label = cohort_label(role.name)
        if label:
            cohorts[label] = role.id

    taxonomy = RoleTaxonomy(guild_id=guild_id, cohorts=cohorts, **found)
    for category in taxonomy.missing_categories():
        LOG.warning("roles.category_missing category=%s role_name=%s", category, getattr(names, category))
    return taxonomy


class ReadWriteLock:
    """Shared/exclusive lock; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RoleSourceProtocol(Protocol):
    def list_roles(self, guild_id: str) -> List[Role]:
        ...


class RoleCache:
    """Thread-safe holder of the current `RoleTaxonomy` for one guild."""

    def __init__(self, source: RoleSourceProtocol, guild_id: str, *, names: CategoryNames | None = None) -> None:
        self._source = source
        self.guild_id = guild_id
        self._names = names or CategoryNames()
        self._taxonomy: Optional[RoleTaxonomy] = None
        self._rw = ReadWriteLock()
        self._rebuild_lock = Lock()
        self._listeners: List[Callable[[RoleTaxonomy], None]] = []

    def add_listener(self, fn: Callable[[RoleTaxonomy], None]) -> None:
        """Call `fn(taxonomy)` after every successful rebuild or load."""
        self._listeners.append(fn)

    def snapshot(self) -> Optional[RoleTaxonomy]:
        with self._rw.read():
            return self._taxonomy

    @property
    def initialized(self) -> bool:
        return self.snapshot() is not None

    def _swap(self, taxonomy: RoleTaxonomy) -> None:
        with self._rw.write():
            self._taxonomy = taxonomy

    def _notify(self, taxonomy: RoleTaxonomy) -> None:
        for fn in list(self._listeners):
            try:
                fn(taxonomy)
            except Exception:
                LOG.exception("roles.listener_failed listener=%r", fn)

    def load(self, taxonomy: RoleTaxonomy) -> None:
        """Seed the cache from a persisted snapshot."""
        self._swap(taxonomy)
        LOG.info("roles.loaded guild=%s cohorts=%d", taxonomy.guild_id, len(taxonomy.cohorts))

    def _rebuild_locked(self) -> RoleTaxonomy:
        try:
            roles = self._source.list_roles(self.guild_id)
        except Exception:
            telemetry.increment_counter("role_cache_rebuilds_total", status="failed")
            raise
        taxonomy = build_taxonomy(roles, self.guild_id, self._names)
        self._swap(taxonomy)
        telemetry.increment_counter("role_cache_rebuilds_total", status="ok")
        LOG.info(
            "roles.rebuilt guild=%s roles=%d cohorts=%d",
            self.guild_id,
            len(roles),
            len(taxonomy.cohorts),
        )
        self._notify(taxonomy)
        return taxonomy

    def rebuild(self) -> RoleTaxonomy:
        """Fetch the full role list and replace the snapshot.

        Raises whatever the role source raises; the previous snapshot (if any)
        stays in place on failure.
        """
        with self._rebuild_lock:
            return self._rebuild_locked()

    def ensure(self) -> RoleTaxonomy:
        """Return the snapshot, rebuilding first when uninitialized.

        Raises:
            CacheUninitialized: no snapshot and the rebuild failed.
        """
        taxonomy = self.snapshot()
        if taxonomy is not None:
            return taxonomy
        with self._rebuild_lock:
            taxonomy = self.snapshot()
            if taxonomy is not None:
                return taxonomy
            try:
                return self._rebuild_locked()
            except BouncerError as exc:
                LOG.error("roles.rebuild_failed guild=%s error=%s", self.guild_id, exc)
                raise CacheUninitialized("role taxonomy not available") from exc

    def roles_for(self, identity: Identity) -> List[str]:
        return self.ensure().roles_for(identity)


def save_snapshot(path: str | Path, taxonomy: RoleTaxonomy) -> None:
    """Persist the snapshot as JSON (owner read/write only)."""
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(json.dumps(taxonomy.to_dict(), indent=2), encoding="utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, target)


def load_snapshot(path: str | Path) -> Optional[RoleTaxonomy]:
    """Read a persisted snapshot; None when the file does not exist."""
    target = Path(path)
    if not target.exists():
        return None
    return RoleTaxonomy.from_dict(json.loads(target.read_text(encoding="utf-8")))


__all__ = [
    "CategoryNames",
    "RoleTaxonomy",
    "RoleCache",
    "ReadWriteLock",
    "RoleSourceProtocol",
    "build_taxonomy",
    "cohort_label",
    "save_snapshot",
    "load_snapshot",
]
