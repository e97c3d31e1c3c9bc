"""
Configuration and startup security checks for the bouncer.

Why:
    Centralise every environment variable the bot, the admin API and the CLI
    read, so defaults and validation live in one place and tests can build a
    `Settings` without booting anything.

Behavior:
    - `load_settings()` parses the environment (integers are range-checked and
      raise ValueError with the variable name).
    - `ensure_secure_config_on_startup()` raises `SystemExit` on obviously
      insecure settings in prod-like environments; dev stays permissive.
    - `load_dotenv_if_wanted()` reads a local `.env` outside pytest.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
import sys

from bouncer.admission.roles import CategoryNames
from bouncer.platform.discord_client import DEFAULT_API_BASE

# DISCORD_TOKEN value that runs the admin API without the bot.
DISABLED_TOKEN = "disable"

_PLACEHOLDERS = ("CHANGE_ME", "DUMMY", "REPLACE_ME")


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    discord_token: str = ""
    guild_id: str = ""
    discord_api_base: str = DEFAULT_API_BASE
    admin_api_token: str = ""
    environment: str = "dev"
    http_timeout_seconds: int = 10
    db_connect_timeout: int = 5
    event_workers: int = 4
    event_queue_size: int = 256
    event_submit_timeout: int = 1
    role_snapshot_path: str = ""
    log_level: str = "INFO"
    role_names: CategoryNames = field(default_factory=CategoryNames)

    @property
    def bot_enabled(self) -> bool:
        return bool(self.discord_token) and self.discord_token != DISABLED_TOKEN


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def _int_env(name: str, default: int, *, lo: int = 1, hi: int = 300) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < lo or value > hi:
        raise ValueError(f"{name} out of range ({lo}..{hi}), got: {value}")
    return value


def _role_names_from_env() -> CategoryNames:
    defaults = CategoryNames()
    overrides = {}
    for attr in ("professor", "ta", "student_leadership", "alumni_board", "newbie", "pre_core"):
        value = (os.getenv(f"ROLE_NAME_{attr.upper()}") or "").strip()
        if value:
            overrides[attr] = value
    if not overrides:
        return defaults
    return replace(defaults, **overrides)


def load_settings() -> Settings:
    """Parse and validate settings from environment variables."""
    return Settings(
        database_url=(os.getenv("DATABASE_URL") or "").strip(),
        discord_token=(os.getenv("DISCORD_TOKEN") or "").strip(),
        guild_id=(os.getenv("DISCORD_GUILD_ID") or "").strip(),
        discord_api_base=(os.getenv("DISCORD_API_BASE") or DEFAULT_API_BASE).strip(),
        admin_api_token=(os.getenv("ADMIN_API_TOKEN") or "").strip(),
        environment=(os.getenv("BOUNCER_ENV") or "dev").strip().lower(),
        http_timeout_seconds=_int_env("HTTP_TIMEOUT_SECONDS", 10),
        db_connect_timeout=_int_env("DB_CONNECT_TIMEOUT", 5),
        event_workers=_int_env("EVENT_WORKERS", 4, hi=64),
        event_queue_size=_int_env("EVENT_QUEUE_SIZE", 256, hi=100_000),
        event_submit_timeout=_int_env("EVENT_SUBMIT_TIMEOUT", 1, lo=0, hi=60),
        role_snapshot_path=(os.getenv("ROLE_SNAPSHOT_PATH") or "").strip(),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        role_names=_role_names_from_env(),
    )


def ensure_secure_config_on_startup(settings: Settings | None = None) -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like envs only):
    - ADMIN_API_TOKEN must be set and not a placeholder.
    - DATABASE_URL must not explicitly disable TLS.
    - DISCORD_API_BASE must use https.
    """
    settings = settings or load_settings()
    if not _is_prod_like(settings.environment):
        return

    token = settings.admin_api_token
    if not token or token.upper().startswith(_PLACEHOLDERS):
        raise SystemExit("Refusing to start: ADMIN_API_TOKEN is unset or a placeholder in production.")

    if "sslmode=disable" in settings.database_url:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    if not settings.discord_api_base.lower().startswith("https://"):
        raise SystemExit("Refusing to start: DISCORD_API_BASE must use https in production.")


def _should_load_dotenv() -> bool:
    """Never under pytest; otherwise opt-out via BOUNCER_ENABLE_DOTENV=false."""
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("BOUNCER_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def load_dotenv_if_wanted() -> bool:
    from dotenv import load_dotenv

    if not _should_load_dotenv():
        return False
    load_dotenv()
    return True


__all__ = [
    "DISABLED_TOKEN",
    "Settings",
    "load_settings",
    "ensure_secure_config_on_startup",
    "load_dotenv_if_wanted",
]
