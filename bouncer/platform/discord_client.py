"""
Discord REST client (minimal) for role listing, member search and grants.

Design:
- Framework-agnostic, sync, `requests.Session` based; every call carries a
  timeout and there is no retry. A slow or failing call fails that operation.
- Failures are normalized here into the closed error set of
  `bouncer.admission.errors`; callers never inspect status codes or message
  text:
    403 (e.g. code 50013 "Missing Permissions") -> ExternalPermissionDenied
    404                                         -> NotFound
    429, 5xx, connection errors, timeouts       -> ExternalUnavailable
    other non-2xx                               -> ExternalError
- A 2xx reply whose body is not the expected JSON raises ExternalError.
- DM channel ids are kept for the most recently messaged members only
  (`dm_cache_size`).

Security:
- Never log the bot token. Message contents sent to members are catalog
  texts only.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, List, TypeVar

import requests

from bouncer.admission.domain import Member, Role
from bouncer.admission.errors import (
    ExternalError,
    ExternalPermissionDenied,
    ExternalUnavailable,
    NotFound,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_API_BASE = "https://discord.com/api/v10"
DM_CHANNEL_CACHE_SIZE = 256


def _error_for(resp: requests.Response, what: str) -> Exception:
    code = None
    try:
        body = resp.json()
        if isinstance(body, dict) and isinstance(body.get("code"), int):
            code = body["code"]
    except ValueError:
        pass
    status = resp.status_code
    msg = f"{what}: HTTP {status}"
    if status == 403:
        return ExternalPermissionDenied(msg, status_code=status, code=code)
    if status == 404:
        return NotFound(msg)
    if status == 429 or status >= 500:
        return ExternalUnavailable(msg, status_code=status, code=code)
    return ExternalError(msg, status_code=status, code=code)


class DiscordClient:
    """Thin adapter over the Discord HTTP API for one bot token."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = DEFAULT_API_BASE,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        dm_cache_size: int = DM_CHANNEL_CACHE_SIZE,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.dm_cache_size = max(1, dm_cache_size)
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bot {token}",
            "User-Agent": "DiscordBot (https://github.com/kylrth/disco-bouncer, 1.0)",
        })
        self._dm_channels: "OrderedDict[str, str]" = OrderedDict()
        self._dm_lock = Lock()

    # --- REST helpers -----------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        what = f"{method} {path}"
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ExternalUnavailable(f"{what}: {type(exc).__name__}") from exc
        if 200 <= resp.status_code < 300:
            return resp
        raise _error_for(resp, what)


    def _fetch(self, method: str, path: str, parse: Callable[[Any], T], **kwargs) -> T:
        """Run a request and turn its JSON body into a value with `parse`.

        A body that is not JSON or lacks the expected fields raises ExternalError.
        """
        resp = self._request(method, path, **kwargs)
        try:
            return parse(resp.json())
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ExternalError(f"{method} {path}: malformed body") from exc

    def current_user_id(self) -> str:
        """ID of the bot account itself (used to ignore its own messages)."""
        return self._fetch("GET", "/users/@me", _object_id)

    # --- Roles and members ------------------------------------------------

    def list_roles(self, guild_id: str) -> List[Role]:
        return self._fetch("GET", f"/guilds/{guild_id}/roles", _parse_roles)

    def search_members(self, guild_id: str, name: str, limit: int = 10) -> List[Member]:
        params = {"query": name, "limit": max(1, min(1000, int(limit)))}
        return self._fetch("GET", f"/guilds/{guild_id}/members/search", _parse_members, params=params)

    def grant_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        self._request("PUT", f"/guilds/{guild_id}/members/{member_id}/roles/{role_id}")

    def revoke_role(self, guild_id: str, member_id: str, role_id: str) -> None:
        self._request("DELETE", f"/guilds/{guild_id}/members/{member_id}/roles/{role_id}")

    def set_display_name(self, guild_id: str, member_id: str, name: str) -> None:
        self._request("PATCH", f"/guilds/{guild_id}/members/{member_id}", json={"nick": name})

    # --- Direct messages --------------------------------------------------

    def _dm_channel(self, member_id: str) -> str:
        with self._dm_lock:
            channel_id = self._dm_channels.get(member_id)
            if channel_id:
                self._dm_channels.move_to_end(member_id)
                return channel_id
        channel_id = self._fetch("POST", "/users/@me/channels", _object_id, json={"recipient_id": member_id})
        if not channel_id:
            raise ExternalError("POST /users/@me/channels: channel id missing")
        with self._dm_lock:
            self._dm_channels[member_id] = channel_id
            self._dm_channels.move_to_end(member_id)
            while len(self._dm_channels) > self.dm_cache_size:
                self._dm_channels.popitem(last=False)
        return channel_id

    def send_direct_message(self, member_id: str, text: str) -> None:
        channel_id = self._dm_channel(member_id)
        self._request("POST", f"/channels/{channel_id}/messages", json={"content": text})


def _object_id(body: Any) -> str:
    return str((body or {}).get("id") or "")


def _parse_roles(body: Any) -> List[Role]:
    return [Role(id=str(r["id"]), name=str(r.get("name") or "")) for r in (body or [])]


def _parse_members(body: Any) -> List[Member]:
    out: List[Member] = []
    for m in body or []:
        user = m.get("user") or {}
        if not user.get("id"):
            continue
        out.append(Member(id=str(user["id"]), username=str(user.get("username") or ""), nick=str(m.get("nick") or "")))
    return out


__all__ = ["DiscordClient", "DEFAULT_API_BASE", "DM_CHANNEL_CACHE_SIZE"]
