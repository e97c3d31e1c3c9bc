"""
Platform events and the bounded dispatcher that runs their handlers.

Intent:
    The gateway transport (websocket session, reconnects) is an external
    collaborator. Whatever delivers events calls `EventDispatcher.submit`;
    a fixed pool of worker threads drains a bounded queue and calls the
    handler registered for the event type.

Behavior:
    - `submit` waits at most `submit_timeout` seconds for queue space, then
      drops the event with a warning (no unbounded growth).
    - A handler exception is logged and never stops its worker.
    - Handlers for different events run concurrently; shared state they touch
      (the role cache) carries its own locking.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import queue
import threading
from typing import Callable, Dict, List, Mapping, Optional, Type, Union

from bouncer import telemetry

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberJoined:
    guild_id: str
    member_id: str
    username: str = ""


@dataclass(frozen=True)
class DirectMessage:
    author_id: str
    content: str
    author_username: str = ""


@dataclass(frozen=True)
class GuildMessage:
    guild_id: str
    author_id: str


@dataclass(frozen=True)
class RoleChanged:
    guild_id: str
    action: str  # "created" | "updated" | "deleted"
    role_id: str
    role_name: str = ""


Event = Union[MemberJoined, DirectMessage, GuildMessage, RoleChanged]
Handler = Callable[[Event], None]

_STOP = object()


class EventDispatcher:
    """Bounded queue plus worker threads.

    Parameters:
        handlers: event type -> callable; unknown types are ignored.
        workers: number of worker threads.
        queue_size: maximum number of pending events.
        submit_timeout: seconds `submit` waits for queue space.
    """

    def __init__(
        self,
        handlers: Mapping[Type, Handler],
        *,
        workers: int = 4,
        queue_size: int = 256,
        submit_timeout: float = 1.0,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handlers: Dict[Type, Handler] = dict(handlers)
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=queue_size)
        self._workers = workers
        self._submit_timeout = submit_timeout
        self._threads: List[threading.Thread] = []
        self._running = False
        self._state_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                return
            self._running = True
            for i in range(self._workers):
                t = threading.Thread(target=self._work, name=f"bouncer-events-{i}", daemon=True)
                t.start()
                self._threads.append(t)
        LOG.info("events.started workers=%d", self._workers)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Let queued events finish, then stop the workers.

        Stop markers go behind every accepted event, so nothing accepted by
        `submit` is left unhandled. `timeout` bounds both the wait for queue
        space and each worker join.
        """
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            threads = list(self._threads)
            self._threads.clear()
            for _ in threads:
                try:
                    self._queue.put(_STOP, timeout=timeout)
                except queue.Full:
                    LOG.warning("events.stop_timeout reason=queue_full")
                    break
        for t in threads:
            t.join(timeout)
        LOG.info("events.stopped")

    def submit(self, event: Event) -> bool:
        """Queue `event` for a worker. Returns False when it was dropped."""
        kind = type(event).__name__
        try:
            with self._state_lock:
                if not self._running:
                    raise RuntimeError("dispatcher not started")
                self._queue.put(event, timeout=self._submit_timeout)
        except queue.Full:
            telemetry.increment_counter("events_dropped_total", kind=kind)
            LOG.warning("events.dropped kind=%s reason=queue_full", kind)
            return False
        telemetry.set_gauge("event_queue_depth", self._queue.qsize())
        return True

    def join(self) -> None:
        """Block until every submitted event has been handled."""
        self._queue.join()

    def dispatch(self, event: Event) -> None:
        """Run the handler for `event` on the calling thread."""
        handler = self._handlers.get(type(event))
        if handler is None:
            LOG.debug("events.unhandled kind=%s", type(event).__name__)
            return
        try:
            handler(event)
        except Exception:
            LOG.exception("events.handler_failed kind=%s", type(event).__name__)

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self.dispatch(item)  # type: ignore[arg-type]
            finally:
                self._queue.task_done()
                telemetry.set_gauge("event_queue_depth", self._queue.qsize())


__all__ = [
    "MemberJoined",
    "DirectMessage",
    "GuildMessage",
    "RoleChanged",
    "Event",
    "EventDispatcher",
]
