"""Event dispatcher: routing, bounded queue and worker resilience."""

from __future__ import annotations

import threading

import pytest

from bouncer import telemetry
from bouncer.platform.events import DirectMessage, EventDispatcher, GuildMessage, MemberJoined


def test_events_are_routed_by_type():
    seen = []
    dispatcher = EventDispatcher({MemberJoined: seen.append}, workers=2)
    dispatcher.start()
    try:
        assert dispatcher.submit(MemberJoined(guild_id="g", member_id="m1"))
        assert dispatcher.submit(GuildMessage(guild_id="g", author_id="x"))  # no handler
        dispatcher.join()
    finally:
        dispatcher.stop()
    assert seen == [MemberJoined(guild_id="g", member_id="m1")]


def test_handler_exception_does_not_kill_worker(caplog):
    seen = []

    def flaky(event: DirectMessage) -> None:
        if event.content == "boom":
            raise RuntimeError("handler failed")
        seen.append(event.content)

    dispatcher = EventDispatcher({DirectMessage: flaky}, workers=1)
    dispatcher.start()
    try:
        with caplog.at_level("ERROR"):
            dispatcher.submit(DirectMessage(author_id="a", content="boom"))
            dispatcher.submit(DirectMessage(author_id="a", content="ok"))
            dispatcher.join()
    finally:
        dispatcher.stop()
    assert seen == ["ok"]
    assert "events.handler_failed" in caplog.text


def test_full_queue_drops_event_after_timeout():
    release = threading.Event()
    started = threading.Event()

    def blocking(event: MemberJoined) -> None:
        started.set()
        release.wait(2)

    dispatcher = EventDispatcher({MemberJoined: blocking}, workers=1, queue_size=1, submit_timeout=0.01)
    dispatcher.start()
    try:
        assert dispatcher.submit(MemberJoined(guild_id="g", member_id="1"))
        assert started.wait(1)
        assert dispatcher.submit(MemberJoined(guild_id="g", member_id="2"))  # fills the queue
        assert dispatcher.submit(MemberJoined(guild_id="g", member_id="3")) is False
        assert telemetry.counter_value("events_dropped_total", kind="MemberJoined") == 1
    finally:
        release.set()
        dispatcher.stop()


def test_submit_before_start_raises():
    dispatcher = EventDispatcher({})
    with pytest.raises(RuntimeError):
        dispatcher.submit(MemberJoined(guild_id="g", member_id="1"))


def test_workers_must_be_positive():
    with pytest.raises(ValueError):
        EventDispatcher({}, workers=0)


def test_stop_drains_queued_events():
    seen = []
    dispatcher = EventDispatcher({GuildMessage: seen.append}, workers=2)
    dispatcher.start()
    for i in range(10):
        dispatcher.submit(GuildMessage(guild_id="g", author_id=str(i)))
    dispatcher.stop()
    assert len(seen) == 10
    assert not dispatcher.running


def test_stop_returns_when_queue_stays_full(caplog):
    release = threading.Event()
    started = threading.Event()

    def blocking(event: MemberJoined) -> None:
        started.set()
        release.wait(2)

    dispatcher = EventDispatcher({MemberJoined: blocking}, workers=1, queue_size=1, submit_timeout=0.01)
    dispatcher.start()
    dispatcher.submit(MemberJoined(guild_id="g", member_id="1"))
    assert started.wait(1)
    dispatcher.submit(MemberJoined(guild_id="g", member_id="2"))
    try:
        with caplog.at_level("WARNING"):
            dispatcher.stop(timeout=0.05)
        assert not dispatcher.running
        assert "events.stop_timeout" in caplog.text
        with pytest.raises(RuntimeError):
            dispatcher.submit(MemberJoined(guild_id="g", member_id="3"))
    finally:
        release.set()


def test_every_accepted_event_is_handled_when_stopping_under_load():
    seen = []
    seen_lock = threading.Lock()
    accepted = []
    enough = threading.Event()

    def record(event: GuildMessage) -> None:
        with seen_lock:
            seen.append(event)

    dispatcher = EventDispatcher({GuildMessage: record}, workers=2, queue_size=8)
    dispatcher.start()

    def producer(n: int) -> None:
        i = 0
        while True:
            try:
                ok = dispatcher.submit(GuildMessage(guild_id="g", author_id=f"{n}-{i}"))
            except RuntimeError:
                return
            if ok:
                with seen_lock:
                    accepted.append(i)
                    if len(accepted) >= 50:
                        enough.set()
            i += 1

    producers = [threading.Thread(target=producer, args=(n,)) for n in range(3)]
    for t in producers:
        t.start()
    assert enough.wait(5)
    dispatcher.stop()
    for t in producers:
        t.join(2)

    assert len(seen) == len(accepted)
