"""Discord REST client: request shapes and failure normalization (no network)."""

from __future__ import annotations

from typing import Any, List

import pytest
import requests

from bouncer.admission.domain import Member, Role
from bouncer.admission.errors import (
    ExternalError,
    ExternalPermissionDenied,
    ExternalUnavailable,
    NotFound,
)
from bouncer.admission.orchestrator import MESSAGES, AdmissionOrchestrator
from bouncer.admission.resolver import CandidateResolver
from bouncer.admission.roles import RoleCache
from bouncer.platform.discord_client import DiscordClient
from bouncer.platform.events import MemberJoined
from bouncer.records.stores import InMemoryRecordStore


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, *responses: Any) -> None:
        self.headers: dict = {}
        self.responses = list(responses)
        self.calls: List[dict] = []

    def request(self, method: str, url: str, **kwargs: Any):
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(*responses: Any) -> tuple[DiscordClient, _FakeSession]:
    session = _FakeSession(*responses)
    return DiscordClient("tok", base_url="https://api.test/v10", session=session, timeout=3.0), session  # type: ignore[arg-type]


def test_sets_bot_authorization_header_and_timeout():
    client, session = _client(_FakeResponse(200, []))
    client.list_roles("g1")
    assert session.headers["Authorization"] == "Bot tok"
    assert session.calls[0]["timeout"] == 3.0
    assert session.calls[0]["url"] == "https://api.test/v10/guilds/g1/roles"


def test_list_roles_maps_payload():
    client, _ = _client(_FakeResponse(200, [{"id": 1, "name": "2022 x"}, {"id": "2", "name": "TA"}]))
    assert client.list_roles("g1") == [Role("1", "2022 x"), Role("2", "TA")]


def test_search_members_maps_nick_and_clamps_limit():
    payload = [
        {"user": {"id": "u1", "username": "ada"}, "nick": "Ada L"},
        {"user": {"id": "u2", "username": "bob"}, "nick": None},
        {"user": {}},
    ]
    client, session = _client(_FakeResponse(200, payload))
    members = client.search_members("g1", "a", limit=5000)
    assert members == [Member("u1", "ada", "Ada L"), Member("u2", "bob", "")]
    assert session.calls[0]["params"] == {"query": "a", "limit": 1000}


def test_mutations_use_expected_methods_and_paths():
    client, session = _client(_FakeResponse(204), _FakeResponse(204), _FakeResponse(200, {}))
    client.grant_role("g1", "u1", "r1")
    client.revoke_role("g1", "u1", "r1")
    client.set_display_name("g1", "u1", "Ada")
    assert [(c["method"], c["url"].split("/v10")[1]) for c in session.calls] == [
        ("PUT", "/guilds/g1/members/u1/roles/r1"),
        ("DELETE", "/guilds/g1/members/u1/roles/r1"),
        ("PATCH", "/guilds/g1/members/u1"),
    ]
    assert session.calls[2]["json"] == {"nick": "Ada"}


def test_direct_message_channel_is_opened_once_and_cached():
    client, session = _client(
        _FakeResponse(200, {"id": "dm-1"}),
        _FakeResponse(200, {"id": "msg-1"}),
        _FakeResponse(200, {"id": "msg-2"}),
    )
    client.send_direct_message("u1", "hello")
    client.send_direct_message("u1", "again")
    paths = [c["url"].split("/v10")[1] for c in session.calls]
    assert paths == ["/users/@me/channels", "/channels/dm-1/messages", "/channels/dm-1/messages"]
    assert session.calls[0]["json"] == {"recipient_id": "u1"}
    assert session.calls[2]["json"] == {"content": "again"}


@pytest.mark.parametrize(
    "status,payload,exc_type",
    [
        (403, {"message": "Missing Permissions", "code": 50013}, ExternalPermissionDenied),
        (404, {"message": "Unknown Member", "code": 10007}, NotFound),
        (429, {"message": "You are being rate limited."}, ExternalUnavailable),
        (502, None, ExternalUnavailable),
        (400, {"code": 50035}, ExternalError),
    ],
)
def test_error_statuses_are_normalized(status, payload, exc_type):
    client, _ = _client(_FakeResponse(status, payload))
    with pytest.raises(exc_type):
        client.set_display_name("g1", "u1", "Ada")


def test_permission_error_carries_platform_code():
    client, _ = _client(_FakeResponse(403, {"message": "Missing Permissions", "code": 50013}))
    with pytest.raises(ExternalPermissionDenied) as info:
        client.set_display_name("g1", "u1", "Ada")
    assert info.value.status_code == 403 and info.value.code == 50013


@pytest.mark.parametrize("exc", [requests.ConnectionError("refused"), requests.Timeout("slow")])
def test_transport_failures_are_unavailable(exc):
    client, _ = _client(exc)
    with pytest.raises(ExternalUnavailable):
        client.list_roles("g1")


def test_current_user_id():
    client, session = _client(_FakeResponse(200, {"id": "bot-1", "username": "bouncer"}))
    assert client.current_user_id() == "bot-1"
    assert session.calls[0]["url"].endswith("/users/@me")


def test_dm_channel_cache_keeps_only_recent_members():
    client, session = _client(
        _FakeResponse(200, {"id": "dm-1"}),
        _FakeResponse(200, {}),
        _FakeResponse(200, {"id": "dm-2"}),
        _FakeResponse(200, {}),
        _FakeResponse(200, {"id": "dm-1b"}),
        _FakeResponse(200, {}),
    )
    client.dm_cache_size = 1
    client.send_direct_message("u1", "hi")
    client.send_direct_message("u2", "hi")
    client.send_direct_message("u1", "hi again")
    paths = [c["url"].split("/v10")[1] for c in session.calls]
    assert paths.count("/users/@me/channels") == 3
    assert paths[-1] == "/channels/dm-1b/messages"


@pytest.mark.parametrize(
    "call,payload",
    [
        (lambda c: c.list_roles("g1"), None),
        (lambda c: c.list_roles("g1"), [{"name": "no id"}]),
        (lambda c: c.list_roles("g1"), "<html>oops</html>"),
        (lambda c: c.search_members("g1", "a"), [["not", "a", "member"]]),
        (lambda c: c.current_user_id(), None),
        (lambda c: c.send_direct_message("u1", "hi"), ["unexpected"]),
    ],
)
def test_malformed_success_body_is_external_error(call, payload):
    client, _ = _client(_FakeResponse(200, payload))
    with pytest.raises(ExternalError) as info:
        call(client)
    assert "malformed body" in str(info.value)


def test_join_with_malformed_roles_body_still_welcomes_member():
    client, session = _client(
        _FakeResponse(200, None),
        _FakeResponse(200, {"id": "dm-1"}),
        *[_FakeResponse(200, {}) for _ in MESSAGES["welcome"]],
    )
    store = InMemoryRecordStore()
    cache = RoleCache(client, "g1")
    orchestrator = AdmissionOrchestrator(CandidateResolver(store), store, cache, client)

    orchestrator.handle_member_joined(MemberJoined(guild_id="g1", member_id="u1"))

    sent = [c["json"]["content"] for c in session.calls if c["url"].endswith("/channels/dm-1/messages")]
    assert sent == MESSAGES["welcome"]
    assert not cache.initialized
