"""
Admission Orchestrator: turns platform events into admissions.

Flow of a direct message:
    1. Resolve the submitted secret to one stored identity.
    2. Acknowledge, then set the display name, grant the identity's roles and
       revoke the newbie role. Every mutation is attempted; failures are
       collected rather than short-circuiting.
    3. Delete the record once the role step ran against a populated taxonomy,
       so a credential admits at most one member. When the taxonomy could not
       be populated the record is kept and the same secret can be retried.

Replies are catalog texts only; internal error text never reaches a member.
There is no atomic claim between resolution and delete: two members racing
with the same secret may both be admitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, List, Optional, Protocol, Type

from bouncer import telemetry
from bouncer.platform.events import DirectMessage, GuildMessage, MemberJoined, RoleChanged
from bouncer.records.ports import RecordStoreProtocol

from .domain import Identity
from .errors import BadKey, BouncerError, CacheUninitialized, ExternalPermissionDenied, NotFound
from .resolver import CandidateResolver
from .roles import RoleCache

LOG = logging.getLogger(__name__)

MESSAGES: Dict[str, List[str]] = {
    "welcome": [
        "Welcome to the server! Please send me your unique code here to gain access to the rest "
        "of the server.",
        "By sending your code, you allow the program to give the server admins your real name and "
        "the cohort you finished with.",
        "I'll use this information to set which channels you'll be able to see, and to set your "
        "nickname on the server.",
        "If you're new to Discord, don't send me the code until you've set a password for your new "
        "account! Otherwise you'll lose access once you close your browser window and your code "
        "will not work next time.",
    ],
    "successful": ["I found your info! I'll let you in now. :)"],
    "bad_key": [
        "Sorry, that key did not work. The key should be 64 hexadecimal characters, sent as plain "
        "text in a single message by itself.",
        "If you still have trouble, ask for help in the waiting room channel.",
    ],
    "not_found": ["Sorry, that key did not work. Ask for help in the waiting room channel!"],
    "decryption_error": [
        "There was a decryption error with that key. Ask for help in the waiting room channel!",
    ],
    "nick_perm": [
        "Everything worked except I wasn't able to set your nickname because of your high role.",
        "Please set your nickname by sending `/nick FIRST LAST` in one of the channels.",
    ],
    "admit_error": [
        "There was an error while trying to admit you. Ask for help in the waiting room channel!",
    ],
    "other_error": [
        "There was an error with a message I tried to send. Complain in the waiting room channel!",
    ],
}


class AdmissionClientProtocol(Protocol):
    def send_direct_message(self, member_id: str, text: str) -> None:
        ...

    def set_display_name(self, guild_id: str, member_id: str, name: str) -> None:
        ...

    def grant_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        ...

    def revoke_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        ...


@dataclass
class AdmissionResult:
    """What happened to one submitted secret.

    outcome: "ignored" | "bad_key" | "not_found" | "decryption_error" |
             "admitted" | "partial" | "deferred"
    """

    outcome: str
    record_id: Optional[int] = None
    errors: List[BouncerError] = field(default_factory=list)
    deleted: bool = False
    nick_denied: bool = False


class AdmissionOrchestrator:
    def __init__(
        self,
        resolver: CandidateResolver,
        store: RecordStoreProtocol,
        cache: RoleCache,
        client: AdmissionClientProtocol,
        *,
        bot_user_id: str = "",
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.cache = cache
        self.client = client
        self.bot_user_id = bot_user_id

    def handlers(self) -> Dict[Type, Callable]:
        """Event type -> handler mapping for `EventDispatcher`."""
        return {
            MemberJoined: self.handle_member_joined,
            DirectMessage: self.handle_direct_message,
            GuildMessage: self.handle_guild_message,
            RoleChanged: self.handle_role_changed,
        }

    # --- Replies ----------------------------------------------------------

    def reply(self, member_id: str, kind: str) -> None:
        """Send the catalog lines for `kind`; stops at the first failed line."""
        lines = MESSAGES.get(kind)
        if lines is None:
            LOG.error("admission.unknown_message kind=%s", kind)
            lines = MESSAGES["other_error"]
        for line in lines:
            try:
                self.client.send_direct_message(member_id, line)
            except BouncerError as exc:
                LOG.error("admission.reply_failed member=%s kind=%s error=%s", member_id, kind, exc)
                break

    # --- Event handlers ---------------------------------------------------

    def handle_member_joined(self, event: MemberJoined) -> None:
        try:
            self.cache.ensure()
        except CacheUninitialized:
            LOG.warning("admission.join_without_roles member=%s", event.member_id)
        self.reply(event.member_id, "welcome")
        LOG.debug("admission.welcomed member=%s username=%s", event.member_id, event.username)

    def handle_guild_message(self, event: GuildMessage) -> None:
        if self.cache.initialized:
            return
        try:
            self.cache.rebuild()
        except BouncerError as exc:
            LOG.error("admission.rebuild_failed trigger=guild_message error=%s", exc)

    def handle_role_changed(self, event: RoleChanged) -> None:
        LOG.info("admission.role_changed action=%s role=%s name=%s", event.action, event.role_id, event.role_name)
        try:
            self.cache.rebuild()
        except BouncerError as exc:
            LOG.error("admission.rebuild_failed trigger=role_%s error=%s", event.action, exc)

    def handle_direct_message(self, event: DirectMessage) -> Optional[AdmissionResult]:
        if self.bot_user_id and event.author_id == self.bot_user_id:
            return None
        return self.admit(event.author_id, event.content)

    # --- Admission --------------------------------------------------------

    def _finish(self, result: AdmissionResult) -> AdmissionResult:
        telemetry.increment_counter("admissions_total", outcome=result.outcome)
        return result

    def _grant_roles(self, member_id: str, identity: Identity, errors: List[BouncerError]) -> bool:
        """Grant identity roles and drop the newbie role. False when the taxonomy is unavailable."""
        try:
            taxonomy = self.cache.ensure()
        except CacheUninitialized as exc:
            errors.append(exc)
            return False
        guild_id = self.cache.guild_id
        for role_id in taxonomy.roles_for(identity):
            try:
                self.client.grant_role(guild_id, member_id, role_id)
            except BouncerError as exc:
                LOG.warning("admission.grant_failed member=%s role=%s error=%s", member_id, role_id, exc)
                errors.append(exc)
        if not taxonomy.newbie:
            LOG.info("admission.newbie_revoke_skipped member=%s", member_id)
            return True
        try:
            self.client.revoke_role(guild_id, member_id, taxonomy.newbie)
        except BouncerError as exc:
            LOG.warning("admission.revoke_failed member=%s role=%s error=%s", member_id, taxonomy.newbie, exc)
            errors.append(exc)
        return True

    def admit(self, member_id: str, secret: str) -> AdmissionResult:
        secret = (secret or "").strip()
        try:
            identity, record_id = self.resolver.resolve(secret)
        except BadKey as exc:
            LOG.info("admission.bad_key member=%s error=%s", member_id, exc)
            self.reply(member_id, "bad_key")
            return self._finish(AdmissionResult("bad_key"))
        except NotFound:
            LOG.info("admission.not_found member=%s", member_id)
            self.reply(member_id, "not_found")
            return self._finish(AdmissionResult("not_found"))
        except Exception:
            LOG.exception("admission.decrypt_failed member=%s", member_id)
            self.reply(member_id, "decryption_error")
            return self._finish(AdmissionResult("decryption_error"))

        self.reply(member_id, "successful")
        result = AdmissionResult("admitted", record_id=record_id)

        try:
            self.client.set_display_name(self.cache.guild_id, member_id, identity.name)
        except ExternalPermissionDenied as exc:
            LOG.info("admission.nick_denied member=%s error=%s", member_id, exc)
            result.nick_denied = True
        except BouncerError as exc:
            LOG.warning("admission.nick_failed member=%s error=%s", member_id, exc)
            result.errors.append(exc)

        roles_ready = self._grant_roles(member_id, identity, result.errors)

        if result.errors:
            LOG.error(
                "admission.admit_failed member=%s record_id=%s errors=%s",
                member_id,
                record_id,
                "; ".join(f"{type(e).__name__}: {e}" for e in result.errors),
            )
            self.reply(member_id, "admit_error")
            result.outcome = "partial" if roles_ready else "deferred"
        elif result.nick_denied:
            self.reply(member_id, "nick_perm")

        LOG.info(
            "admission.admitted member=%s record_id=%s name=%s cohort=%s professor=%s ta=%s sl=%s ab=%s",
            member_id,
            record_id,
            identity.name,
            identity.cohort or "-",
            identity.professor,
            identity.ta,
            identity.student_leadership,
            identity.alumni_board,
        )

        if not roles_ready:
            LOG.warning("admission.record_kept record_id=%s reason=cache_uninitialized", record_id)
            return self._finish(result)
        try:
            self.store.delete(record_id)
            result.deleted = True
        except Exception:
            LOG.exception("admission.delete_failed record_id=%s", record_id)
        return self._finish(result)


__all__ = ["MESSAGES", "AdmissionClientProtocol", "AdmissionResult", "AdmissionOrchestrator"]
