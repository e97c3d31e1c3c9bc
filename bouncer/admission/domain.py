"""
Admission domain types and constants.

Why:
- Centralize the record shape and the pre-core sentinel so the CLI, the
  admin API, the resolver and the role cache agree on one vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import re

# Cohort label meaning "not yet assigned a definite cohort".
PRE_CORE = "pre-core"

_COHORT_LABEL = re.compile(r"^\d{4}")


def is_pre_core(cohort: str, *, professor: bool = False) -> bool:
    """Return True when the cohort label denotes the pre-core state.

    An empty label counts as pre-core unless the identity is staff.
    """
    label = (cohort or "").strip()
    if label == PRE_CORE:
        return True
    return not label and not professor


def validate_cohort(cohort: str) -> str:
    """Normalize a cohort label for storage.

    Accepts empty, the pre-core sentinel, or a label starting with four digits
    (e.g. "2022", "2026w"). Raises ValueError otherwise.
    """
    label = (cohort or "").strip()
    if not label or label == PRE_CORE:
        return label
    if not _COHORT_LABEL.match(label):
        raise ValueError("invalid_cohort")
    return label


@dataclass(frozen=True)
class Identity:
    """Plaintext identity revealed by a successful credential match."""

    name: str
    cohort: str = ""
    professor: bool = False
    ta: bool = False
    student_leadership: bool = False
    alumni_board: bool = False


@dataclass(frozen=True)
class IdentityRecord:
    """Stored registration record. `encrypted_name` is never decrypted server-side
    without the user's secret."""

    id: int
    encrypted_name: str
    lookup_hash: str
    cohort: str = ""
    professor: bool = False
    ta: bool = False
    student_leadership: bool = False
    alumni_board: bool = False

    def reveal(self, name: str) -> Identity:
        return Identity(
            name=name,
            cohort=self.cohort,
            professor=self.professor,
            ta=self.ta,
            student_leadership=self.student_leadership,
            alumni_board=self.alumni_board,
        )

    def with_cohort(self, cohort: str) -> "IdentityRecord":
        return replace(self, cohort=cohort)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.encrypted_name,
            "name_key_hash": self.lookup_hash,
            "cohort": self.cohort,
            "professor": self.professor,
            "ta": self.ta,
            "student_leadership": self.student_leadership,
            "alumni_board": self.alumni_board,
        }


@dataclass(frozen=True)
class Role:
    id: str
    name: str


@dataclass(frozen=True)
class Member:
    id: str
    username: str
    nick: str = ""

    def matches_exactly(self, name: str) -> bool:
        return bool(name) and (self.nick == name or self.username == name)


__all__ = [
    "PRE_CORE",
    "is_pre_core",
    "validate_cohort",
    "Identity",
    "IdentityRecord",
    "Role",
    "Member",
]
