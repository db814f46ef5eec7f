"""End-to-end tests for the worker entrypoint."""

from __future__ import annotations

import asyncio

import pytest

from conftest import CATEGORY, FakeDiceProvider, fetch_rows, seed_requests
from dicehelper.config import Settings
from dicehelper.db.engine import build_engine, build_session_factory
from dicehelper.db.models import Base, RequestStatus
from dicehelper.utils.cancel import CancellationToken


@pytest.fixture(autouse=True)
def _keep_pytest_logging(monkeypatch):
    # main() reconfigures the root logger; leave pytest's capture handlers alone.
    monkeypatch.setattr("dicehelper.worker.worker_main.setup_logger", lambda *a, **kw: None)


def _settings(**kw) -> Settings:
    defaults = {
        "HELPER_BOT_TOKEN": "123:abc",
        "WORKER_POLL_INTERVAL_MS": 10,
        "WORKER_DB_CONNECT_RETRIES": 1,
        "WORKER_DB_CONNECT_DELAY_SECONDS": 0,
    }
    defaults.update(kw)
    return Settings(_env_file=None, **defaults)


class TestStartup:
    @pytest.mark.asyncio
    async def test_missing_config_exits_1(self):
        from dicehelper.worker.worker_main import main

        provider = FakeDiceProvider()
        code = await main(Settings(_env_file=None), provider=provider)

        assert code == 1
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unreachable_database_exits_1(self, tmp_path):
        from dicehelper.worker.worker_main import main

        missing = tmp_path / "no-such-dir" / "queue.db"
        code = await main(_settings(DATABASE_URL=f"sqlite:///{missing}"), provider=FakeDiceProvider())
        assert code == 1

    def test_worker_id_includes_identity(self):
        from dicehelper.worker.worker_main import _default_worker_id

        a = _default_worker_id("dice_helper_bot")
        b = _default_worker_id("dice_helper_bot")
        assert a.startswith("dice_helper_bot@")
        assert a != b


class TestRun:
    @pytest.mark.asyncio
    async def test_processes_queue_and_shuts_down_cleanly(self, tmp_path):
        from dicehelper.worker.worker_main import main

        settings = _settings(DATABASE_URL=f"sqlite:///{tmp_path / 'queue.db'}")

        engine = build_engine(settings)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        ids = await seed_requests(build_session_factory(engine), 1)
        await engine.dispose()

        token = CancellationToken()
        provider = FakeDiceProvider(on_perform=lambda chat, emoji: token.cancel("test done"))

        code = await asyncio.wait_for(main(settings, provider=provider, token=token), timeout=10)

        assert code == 0
        assert provider.closed
        assert provider.calls == [("chat-0", "🎲")]

        engine = build_engine(settings)
        try:
            stored = await fetch_rows(build_session_factory(engine))
        finally:
            await engine.dispose()
        row = stored[ids[0]]
        assert row.handler_type == CATEGORY
        assert row.status == RequestStatus.COMPLETED
        assert row.notes == "processed by dice-helper, value=4."
