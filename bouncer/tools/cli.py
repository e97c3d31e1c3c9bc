"""Operator CLI for the bouncer.

Why:
    Registration, inspection and cohort migration are operator tasks run from
    a trusted machine. Secrets are generated and printed here; the server only
    ever sees ciphertext and lookup hashes.

Usage:
    bouncer --db-dsn postgresql://... upload members.csv > keys.csv
    bouncer get --keys 9fa1...
    bouncer migrate 2026 migrate.csv
    bouncer serve --port 8080

CSV formats:
    upload input:   name,cohort,professor,ta,student_leadership,alumni_board
    upload output:  id,name,key
    migrate input:  id,name,key   (or one name / one key per line with
                    --only-names / --only-keys)

Headers are optional; booleans are 0/1 (true/false also accepted).
"""

from __future__ import annotations

import csv
import json
import logging
import sys
from typing import IO, Iterator, List

import click

from bouncer.admission import credentials
from bouncer.admission.domain import Identity
from bouncer.admission.errors import BouncerError, NotFound
from bouncer.admission.migration import ERROR, MigrationEntry, MigrationReconciler
from bouncer.admission.registration import register
from bouncer.admission.resolver import CandidateResolver
from bouncer.admission.roles import RoleCache
from bouncer.config import Settings, ensure_secure_config_on_startup, load_dotenv_if_wanted, load_settings

LOG = logging.getLogger("bouncer.tools.cli")

_TRUE = {"1", "true", "yes", "y", "t"}
_FALSE = {"", "0", "false", "no", "n", "f"}


def _flag(raw: str, *, column: str, line: int) -> bool:
    value = (raw or "").strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise click.ClickException(f"line {line}: {column} must be 0 or 1, got {raw!r}")


def _rows(stream: IO[str], header_first: str) -> Iterator[tuple[int, List[str]]]:
    """Yield (line_number, cells) skipping blank lines and an optional header."""
    for line_no, row in enumerate(csv.reader(stream), start=1):
        if not row or not any(c.strip() for c in row):
            continue
        if line_no == 1 and row[0].strip().lower() == header_first:
            continue
        yield line_no, [c.strip() for c in row]


def _read_identities(stream: IO[str]) -> List[Identity]:
    identities: List[Identity] = []
    for line_no, row in _rows(stream, "name"):
        if len(row) != 6:
            raise click.ClickException(
                f"line {line_no}: expected name,cohort,professor,ta,student_leadership,alumni_board"
            )
        name, cohort, prof, ta, sl, ab = row
        identities.append(
            Identity(
                name=name,
                cohort=cohort,
                professor=_flag(prof, column="professor", line=line_no),
                ta=_flag(ta, column="ta", line=line_no),
                student_leadership=_flag(sl, column="student_leadership", line=line_no),
                alumni_board=_flag(ab, column="alumni_board", line=line_no),
            )
        )
    return identities


def _read_migration_entries(stream: IO[str], *, only_names: bool, only_keys: bool) -> List[MigrationEntry]:
    entries: List[MigrationEntry] = []
    if only_names or only_keys:
        for raw in stream:
            value = raw.strip()
            if not value:
                continue
            entries.append(MigrationEntry(name=value) if only_names else MigrationEntry(secret=value))
        return entries
    for line_no, row in _rows(stream, "id"):
        if len(row) != 3:
            raise click.ClickException(f"line {line_no}: expected id,name,key")
        _, name, key = row
        entries.append(MigrationEntry(name=name, secret=key or None))
    return entries


# --- Context helpers ------------------------------------------------------


def _settings(ctx: click.Context) -> Settings:
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        obj["settings"] = load_settings()
    return obj["settings"]


def _store(ctx: click.Context):
    obj = ctx.ensure_object(dict)
    if "store" not in obj:
        from bouncer.records.stores_db import DBRecordStore

        dsn = obj.get("db_dsn") or _settings(ctx).database_url
        if not dsn:
            raise click.ClickException("--db-dsn or DATABASE_URL is required")
        obj["store"] = DBRecordStore(dsn, connect_timeout=_settings(ctx).db_connect_timeout)
    return obj["store"]


def _client(ctx: click.Context):
    obj = ctx.ensure_object(dict)
    if "client" not in obj:
        from bouncer.bot import build_client

        settings = _settings(ctx)
        if not settings.bot_enabled:
            raise click.ClickException("DISCORD_TOKEN is required for this command")
        obj["client"] = build_client(settings)
    return obj["client"]


def _role_cache(ctx: click.Context) -> RoleCache:
    settings = _settings(ctx)
    guild_id = ctx.obj.get("guild_id") or settings.guild_id
    if not guild_id:
        raise click.ClickException("--guild-id or DISCORD_GUILD_ID is required")
    return RoleCache(_client(ctx), guild_id, names=settings.role_names)


# --- Commands -------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", envvar="DATABASE_URL", help="Postgres DSN for the records table.")
@click.option("--guild-id", envvar="DISCORD_GUILD_ID", help="Discord server (guild) ID.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.pass_context
def cli(ctx: click.Context, db_dsn: str | None, guild_id: str | None, verbose: bool) -> None:
    """Manage admission records and run the bouncer."""
    obj = ctx.ensure_object(dict)
    if db_dsn:
        obj.setdefault("db_dsn", db_dsn)
    if guild_id:
        obj.setdefault("guild_id", guild_id)
    level = logging.DEBUG if verbose else getattr(logging, _settings(ctx).log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s", stream=sys.stderr)


@cli.command()
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.pass_context
def upload(ctx: click.Context, source: IO[str]) -> None:
    """Register members from CSV and print id,name,key for distribution."""
    identities = _read_identities(source)
    store = _store(ctx)
    writer = csv.writer(sys.stdout, lineterminator="\n")
    writer.writerow(["id", "name", "key"])
    for identity in identities:
        try:
            record_id, secret = register(store, identity)
        except ValueError as exc:
            raise click.ClickException(f"{identity.name!r}: {exc}")
        writer.writerow([record_id, identity.name, secret])
    LOG.info("cli.upload count=%d", len(identities))


@cli.command()
@click.option("--hashes", "hashes", multiple=True, help="Only records with this lookup hash (repeatable).")
@click.option("--keys", "keys", multiple=True, help="Decrypt the records these secrets open (repeatable).")
@click.pass_context
def get(ctx: click.Context, hashes: tuple[str, ...], keys: tuple[str, ...]) -> None:
    """Print records as CSV; with --keys, decrypt names locally."""
    store = _store(ctx)
    writer = csv.writer(sys.stdout, lineterminator="\n")
    flags = ["professor", "ta", "student_leadership", "alumni_board"]
    if keys:
        resolver = CandidateResolver(store)
        writer.writerow(["id", "name", "cohort", *flags])
        for key in keys:
            try:
                identity, record_id = resolver.resolve(key.strip())
            except BouncerError as exc:
                raise click.ClickException(f"key {key[:8]}...: {type(exc).__name__}")
            writer.writerow(
                [record_id, identity.name, identity.cohort, *(int(getattr(identity, f)) for f in flags)]
            )
        return

    if hashes:
        records = [r for h in hashes for r in store.find_by_lookup_hash(h.strip().lower())]
    else:
        records = store.list_records()
    writer.writerow(["id", "name", "name_key_hash", "cohort", *flags])
    for r in records:
        writer.writerow(
            [r.id, r.encrypted_name, r.lookup_hash, r.cohort, *(int(getattr(r, f)) for f in flags)]
        )


@cli.command()
@click.argument("cohort")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--only-names", is_flag=True, help="SOURCE lists one member name per line.")
@click.option("--only-keys", is_flag=True, help="SOURCE lists one secret per line.")
@click.pass_context
def migrate(ctx: click.Context, cohort: str, source: IO[str], only_names: bool, only_keys: bool) -> None:
    """Move members (or their unused records) into COHORT."""
    if only_names and only_keys:
        raise click.ClickException("--only-names and --only-keys are mutually exclusive")
    entries = _read_migration_entries(source, only_names=only_names, only_keys=only_keys)
    store = _store(ctx)
    reconciler = MigrationReconciler(CandidateResolver(store), store, _role_cache(ctx), _client(ctx))
    try:
        outcomes = reconciler.migrate(entries, cohort)
    except ValueError as exc:
        raise click.ClickException(str(exc))
    for outcome in outcomes:
        click.echo(outcome.to_line())
    if any(o.status == ERROR for o in outcomes):
        ctx.exit(1)


@cli.command()
@click.argument("ids", nargs=-1, type=int, required=True)
@click.pass_context
def delete(ctx: click.Context, ids: tuple[int, ...]) -> None:
    """Delete records by id."""
    store = _store(ctx)
    missing = 0
    for record_id in ids:
        try:
            store.delete(record_id)
        except NotFound:
            missing += 1
            click.echo(f"record {record_id} not found", err=True)
            continue
        click.echo(f"deleted {record_id}")
    if missing:
        ctx.exit(1)


@cli.command()
@click.argument("keys", nargs=-1, required=True)
def runhash(keys: tuple[str, ...]) -> None:
    """Print the lookup hash of each secret."""
    for key in keys:
        try:
            click.echo(credentials.lookup_hash(key.strip()))
        except BouncerError as exc:
            raise click.ClickException(f"key {key[:8]}...: {exc}")


@cli.command()
@click.pass_context
def roles(ctx: click.Context) -> None:
    """Fetch the server's roles and print the resulting taxonomy as JSON."""
    try:
        taxonomy = _role_cache(ctx).rebuild()
    except BouncerError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}")
    click.echo(json.dumps(taxonomy.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.option("--apply-schema", is_flag=True, help="Create the records table if missing.")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, apply_schema: bool) -> None:
    """Run the admin API, plus the bot unless DISCORD_TOKEN=disable."""
    import uvicorn

    from bouncer.bot import build_bouncer, build_store
    from bouncer.records.stores_db import DBRecordStore
    from bouncer.web.main import create_app

    settings = _settings(ctx)
    ensure_secure_config_on_startup(settings)
    store = ctx.obj.get("store") or build_store(settings)
    if apply_schema and isinstance(store, DBRecordStore):
        store.apply_schema()

    bouncer = None
    if settings.bot_enabled:
        bouncer = build_bouncer(settings, store)
        bouncer.start()
        app = create_app(
            store, reconciler=bouncer.reconciler, cache=bouncer.cache, admin_token=settings.admin_api_token
        )
    else:
        LOG.info("cli.serve bot=disabled")
        app = create_app(store, admin_token=settings.admin_api_token)
    try:
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    finally:
        if bouncer is not None:
            bouncer.stop()


def main() -> None:  # pragma: no cover - console entry
    load_dotenv_if_wanted()
    cli()


if __name__ == "__main__":  # pragma: no cover - manual entry
    main()
