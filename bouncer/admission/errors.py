"""
Error taxonomy for the admission bounded context.

Intent:
    Give every layer (credentials, resolver, role cache, platform adapter,
    orchestrator) one closed set of exception types so callers branch on the
    type, never on message text.

Design:
    - Credential errors: BadCiphertext, BadKey, Inauthentic
    - Lookup errors: NotFound, AmbiguousMatch, UnknownCohort
    - Cache state: CacheUninitialized
    - External platform: ExternalPermissionDenied, ExternalUnavailable

Propagation:
    `Inauthentic` never leaves the resolver; it means "wrong candidate".
    `BadKey`/`BadCiphertext` abort resolution because the submission itself
    is malformed.
"""

from __future__ import annotations

from typing import Optional


class BouncerError(Exception):
    """Base class for all domain failures."""


# ----------------------------- Credentials ----------------------------------


class CredentialError(BouncerError):
    """Base class for Credential Engine failures."""


class BadCiphertext(CredentialError):
    """Ciphertext is not hex or shorter than the nonce."""


class BadKey(CredentialError):
    """Secret is not hex or has an invalid key size."""


class Inauthentic(CredentialError):
    """Authentication tag check failed: wrong secret for this ciphertext."""


# ----------------------------- Lookups --------------------------------------


class NotFound(BouncerError):
    """No record (or member) matched."""


class AmbiguousMatch(BouncerError):
    """More than one member matched a name exactly."""


class UnknownCohort(BouncerError):
    """The cohort label has no role in the current taxonomy."""


class CacheUninitialized(BouncerError):
    """The role taxonomy could not be populated yet."""


# ----------------------------- External platform ----------------------------


class ExternalError(BouncerError):
    """Non-success response from the external platform.

    Parameters:
        status_code: HTTP status when one was received.
        code: Platform-specific error code from the response body, if any.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ExternalPermissionDenied(ExternalError):
    """The bot lacks the privilege for this action (e.g. renaming a higher-ranked member)."""


class ExternalUnavailable(ExternalError):
    """Network failure, timeout, rate limit or server error; the call did not complete."""


__all__ = [
    "BouncerError",
    "CredentialError",
    "BadCiphertext",
    "BadKey",
    "Inauthentic",
    "NotFound",
    "AmbiguousMatch",
    "UnknownCohort",
    "CacheUninitialized",
    "ExternalError",
    "ExternalPermissionDenied",
    "ExternalUnavailable",
]
