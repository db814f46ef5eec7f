"""Worker process entrypoint.

Run as a standalone process:

    python -m dicehelper.worker

    # Serve a different category with a bigger batch:
    WORKER_CATEGORY=DARTS_501_THROW WORKER_BATCH_SIZE=5 python -m dicehelper.worker

The worker will:
1. Load dicehelper.config.settings (honours .env file)
2. Exit 1 if DATABASE_URL or HELPER_BOT_TOKEN is missing
3. Probe the database; exit 1 if it stays unreachable
4. Resolve its identity (bot username) and start the poll scheduler
5. Handle SIGINT/SIGTERM gracefully (finish the in-flight cycle, close the
   Telegram client and the connection pool, then exit)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import signal
import socket
import sys
import uuid

from dicehelper.config import ConfigurationError, Settings
from dicehelper.connectors.dice_client import ActionProvider, TelegramDiceClient
from dicehelper.db.engine import build_engine, build_session_factory, wait_for_db
from dicehelper.utils.cancel import CancellationToken
from dicehelper.utils.logger import setup_logger
from dicehelper.utils.metrics import get_metrics_summary
from dicehelper.worker.loop import CycleConfig, run_cycle
from dicehelper.worker.processor import RollProcessor
from dicehelper.worker.scheduler import CycleScheduler

logger = logging.getLogger("dicehelper.worker")


def _default_worker_id(identity: str) -> str:
    return f"{identity}@{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


async def _resolve_identity(provider: ActionProvider, fallback: str) -> str:
    get_me = getattr(provider, "get_me", None)
    if get_me is None:
        return fallback
    username = await get_me()
    if not username:
        logger.warning("Could not resolve bot username; using fallback identity %s", fallback)
        return fallback
    return username


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
        except (NotImplementedError, AttributeError):
            # Windows doesn't support add_signal_handler
            pass


async def main(
    settings: Settings | None = None,
    provider: ActionProvider | None = None,
    token: CancellationToken | None = None,
) -> int:
    """Worker process entrypoint.  Returns the process exit code."""
    if settings is None:
        from dicehelper.config import settings as default_settings

        settings = default_settings

    setup_logger(settings.LOG_FORMAT, settings.LOG_LEVEL)

    try:
        settings.require_runtime_config()
    except ConfigurationError as exc:
        logger.error("FATAL: %s", exc)
        return 1

    logger.info(
        "Starting dice helper (category=%s, interval=%dms, batch=%d, mode=%s, dialect=%s)",
        settings.WORKER_CATEGORY,
        settings.WORKER_POLL_INTERVAL_MS,
        settings.WORKER_BATCH_SIZE,
        settings.WORKER_CLAIM_MODE,
        settings.DB_DIALECT,
    )

    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    try:
        await wait_for_db(
            session_factory,
            max_retries=settings.WORKER_DB_CONNECT_RETRIES,
            delay=settings.WORKER_DB_CONNECT_DELAY_SECONDS,
        )
    except RuntimeError:
        logger.exception("CRITICAL STARTUP ERROR: database unreachable")
        await engine.dispose()
        return 1

    if provider is None:
        provider = TelegramDiceClient(
            settings.HELPER_BOT_TOKEN,
            api_base=settings.TELEGRAM_API_BASE_URL,
            timeout=settings.ACTION_TIMEOUT_SECONDS,
        )

    token = token or CancellationToken()
    try:
        identity = await _resolve_identity(provider, settings.WORKER_ID)
        processor = RollProcessor(provider, identity)
        config = CycleConfig(
            category=settings.WORKER_CATEGORY,
            batch_size=settings.WORKER_BATCH_SIZE,
            worker_id=_default_worker_id(identity),
            mode=settings.WORKER_CLAIM_MODE,
            stale_claim_seconds=settings.WORKER_STALE_CLAIM_SECONDS,
        )
        scheduler = CycleScheduler(
            functools.partial(run_cycle, session_factory, processor, config),
            settings.poll_interval_seconds,
            token,
        )
        _install_signal_handlers(token)
        logger.info("Dice helper @%s operational", identity)
        await scheduler.run()
    finally:
        await provider.close()
        logger.info("Telegram client closed")
        await engine.dispose()
        logger.info("Database pool closed")
        logger.info("Metrics at shutdown: %s", get_metrics_summary()["counters"])

    logger.info("Shutdown complete")
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
