"""Worker settings (loaded from environment variables)."""

from __future__ import annotations

import ssl
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


SUPPORTED_URL_PREFIXES = ("postgresql+asyncpg://", "sqlite+aiosqlite://")


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid."""


class Settings(BaseSettings):
    # ── Database ────────────────────────────────────────────────
    # Shared dice_roll_requests store.  Required at startup.
    # Plain driver schemes are rewritten to their async drivers:
    #   postgres://…   → postgresql+asyncpg://…
    #   sqlite:///…    → sqlite+aiosqlite:///…
    DATABASE_URL: str | None = None

    # Dialect is auto-detected from the URL.
    DB_DIALECT: str = "postgres"  # sqlite | postgres

    # TLS for PostgreSQL.  Hosted databases commonly present certificates
    # that do not chain to a local trust store, hence the lenient default.
    DB_SSL: bool = True
    DB_REJECT_UNAUTHORIZED: bool = False

    # PostgreSQL connection pool tunables (ignored for SQLite)
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30

    DEBUG: bool = False

    # ── Telegram (action provider) ─────────────────────────────
    HELPER_BOT_TOKEN: str | None = None
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    ACTION_TIMEOUT_SECONDS: float = 15.0

    # ── Worker ─────────────────────────────────────────────────
    # handler_type value this process serves.  One deployable can serve any
    # category; run one process per category.
    WORKER_CATEGORY: str = "DICE_21_ROLL"

    # Fallback consumer identity when the bot username cannot be resolved.
    WORKER_ID: str = "dice-helper"

    WORKER_POLL_INTERVAL_MS: int = 2500
    WORKER_BATCH_SIZE: int = 3

    # two_phase          → claim commits immediately, one transaction per result
    # single_transaction → claim, dice sends and writes share one transaction
    WORKER_CLAIM_MODE: Literal["two_phase", "single_transaction"] = "two_phase"

    # Rows left in ``processing`` longer than this are finalized as errors.
    WORKER_STALE_CLAIM_SECONDS: int = 300

    # Startup connectivity probe
    WORKER_DB_CONNECT_RETRIES: int = 5
    WORKER_DB_CONNECT_DELAY_SECONDS: float = 2.0

    # ── Logging ────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text | json

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Computed helpers (not env vars) ────────────────────────

    @model_validator(mode="after")
    def _auto_configure(self) -> "Settings":
        """Rewrite the URL to an async driver and derive the dialect from it."""
        url = self.DATABASE_URL
        if not url:
            return self

        if url.startswith("postgres://"):
            url = "postgresql+asyncpg://" + url[len("postgres://"):]
        elif url.startswith("postgresql://"):
            url = "postgresql+asyncpg://" + url[len("postgresql://"):]
        elif url.startswith("sqlite://"):
            url = "sqlite+aiosqlite://" + url[len("sqlite://"):]
        object.__setattr__(self, "DATABASE_URL", url)

        if url.startswith("postgresql"):
            object.__setattr__(self, "DB_DIALECT", "postgres")
        elif url.startswith("sqlite"):
            object.__setattr__(self, "DB_DIALECT", "sqlite")

        return self

    @property
    def is_postgres(self) -> bool:
        return self.DB_DIALECT == "postgres"

    @property
    def is_sqlite(self) -> bool:
        return self.DB_DIALECT == "sqlite"

    @property
    def poll_interval_seconds(self) -> float:
        return self.WORKER_POLL_INTERVAL_MS / 1000.0

    def require_runtime_config(self) -> None:
        """Fail fast when the worker cannot possibly run."""
        missing = [
            name
            for name in ("DATABASE_URL", "HELPER_BOT_TOKEN")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        if not self.DATABASE_URL.startswith(SUPPORTED_URL_PREFIXES):
            scheme = self.DATABASE_URL.split("://", 1)[0]
            raise ConfigurationError(
                f"Unsupported DATABASE_URL scheme '{scheme}' "
                "(use postgres://, postgresql:// or sqlite://)"
            )
        if self.WORKER_BATCH_SIZE < 1:
            raise ConfigurationError("WORKER_BATCH_SIZE must be at least 1")
        if self.WORKER_POLL_INTERVAL_MS < 1:
            raise ConfigurationError("WORKER_POLL_INTERVAL_MS must be positive")
        # The last row of a batch may wait this long before its claim is renewed.
        worst_wait = self.WORKER_BATCH_SIZE * self.ACTION_TIMEOUT_SECONDS
        if worst_wait >= self.WORKER_STALE_CLAIM_SECONDS:
            raise ConfigurationError(
                f"WORKER_STALE_CLAIM_SECONDS ({self.WORKER_STALE_CLAIM_SECONDS}) must exceed "
                f"WORKER_BATCH_SIZE * ACTION_TIMEOUT_SECONDS ({worst_wait:g})"
            )

    def ssl_context(self) -> ssl.SSLContext | None:
        """Return the asyncpg TLS context, or None when TLS is disabled."""
        if not self.DB_SSL:
            return None
        ctx = ssl.create_default_context()
        if not self.DB_REJECT_UNAUTHORIZED:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def sync_db_url(self) -> str:
        """Return a *synchronous* DB URL for Alembic CLI / migration tooling.

        asyncpg   → psycopg2  (install psycopg2-binary for the Alembic CLI)
        aiosqlite → plain sqlite3
        """
        url = self.DATABASE_URL or ""
        if "+asyncpg" in url:
            return url.replace("+asyncpg", "", 1)
        if "+aiosqlite" in url:
            return url.replace("+aiosqlite", "", 1)
        return url


settings = Settings()
