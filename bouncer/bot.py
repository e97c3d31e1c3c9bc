"""
Bot wiring: one guild, one record store, one Discord client.

`build_bouncer` assembles the admission core around a record store and a
platform client; `Bouncer.start()` syncs the role cache (keeping a stored
snapshot when the platform is unreachable) and starts the event
workers. The gateway connection that produces events is outside this process
boundary: it hands events to `Bouncer.dispatcher.submit`.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from bouncer.admission.errors import BouncerError
from bouncer.admission.migration import MigrationReconciler
from bouncer.admission.orchestrator import AdmissionOrchestrator
from bouncer.admission.resolver import CandidateResolver
from bouncer.admission.roles import RoleCache, RoleTaxonomy, load_snapshot, save_snapshot
from bouncer.config import Settings
from bouncer.platform.discord_client import DiscordClient
from bouncer.platform.events import EventDispatcher
from bouncer.records.ports import RecordStoreProtocol
from bouncer.records.stores import InMemoryRecordStore
from bouncer.records.stores_db import DBRecordStore

LOG = logging.getLogger(__name__)


def build_store(settings: Settings) -> RecordStoreProtocol:
    """Postgres when DATABASE_URL is set; otherwise a process-local store."""
    if settings.database_url:
        return DBRecordStore(settings.database_url, connect_timeout=settings.db_connect_timeout)
    LOG.warning("bot.store_in_memory reason=no_database_url; records are lost on exit")
    return InMemoryRecordStore()


def build_client(settings: Settings) -> DiscordClient:
    return DiscordClient(
        settings.discord_token,
        base_url=settings.discord_api_base,
        timeout=float(settings.http_timeout_seconds),
    )


@dataclass
class Bouncer:
    settings: Settings
    store: RecordStoreProtocol
    client: DiscordClient
    cache: RoleCache
    resolver: CandidateResolver
    orchestrator: AdmissionOrchestrator
    reconciler: MigrationReconciler
    dispatcher: EventDispatcher

    def start(self) -> None:
        try:
            self.orchestrator.bot_user_id = self.client.current_user_id()
        except BouncerError as exc:
            LOG.error("bot.whoami_failed error=%s", exc)
        try:
            self.cache.rebuild()
        except BouncerError as exc:
            if self.cache.initialized:
                LOG.warning("bot.roles_sync_failed guild=%s error=%s; using stored snapshot", self.cache.guild_id, exc)
            else:
                LOG.error("bot.roles_unavailable guild=%s error=%s; will retry on the next guild event", self.cache.guild_id, exc)
        self.dispatcher.start()
        LOG.info("bot.started guild=%s", self.cache.guild_id)

    def stop(self) -> None:
        self.dispatcher.stop()
        LOG.info("bot.stopped")


def _snapshot_saver(path: str):
    def _save(taxonomy: RoleTaxonomy) -> None:
        save_snapshot(path, taxonomy)
        LOG.debug("bot.snapshot_saved path=%s", path)

    return _save


def build_bouncer(
    settings: Settings,
    store: RecordStoreProtocol,
    *,
    client: Optional[DiscordClient] = None,
) -> Bouncer:
    if not settings.guild_id:
        raise ValueError("DISCORD_GUILD_ID is required when the bot is enabled")
    client = client or build_client(settings)
    cache = RoleCache(client, settings.guild_id, names=settings.role_names)

    path = settings.role_snapshot_path
    if path:
        snapshot = load_snapshot(path)
        if snapshot is not None and snapshot.guild_id == settings.guild_id:
            cache.load(snapshot)
        elif snapshot is not None:
            LOG.warning("bot.snapshot_ignored path=%s guild=%s", path, snapshot.guild_id)
        cache.add_listener(_snapshot_saver(path))

    resolver = CandidateResolver(store)
    orchestrator = AdmissionOrchestrator(resolver, store, cache, client)
    reconciler = MigrationReconciler(resolver, store, cache, client)
    dispatcher = EventDispatcher(
        orchestrator.handlers(),
        workers=settings.event_workers,
        queue_size=settings.event_queue_size,
        submit_timeout=float(settings.event_submit_timeout),
    )
    return Bouncer(settings, store, client, cache, resolver, orchestrator, reconciler, dispatcher)


__all__ = ["Bouncer", "build_bouncer", "build_client", "build_store"]
