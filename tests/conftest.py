"""Shared fixtures for dice helper tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dicehelper.connectors.dice_client import ActionOutcome, RollValue
from dicehelper.db.models import Base, DiceRollRequest
from dicehelper.utils.metrics import metrics
from dicehelper.worker.enqueue import enqueue_roll

CATEGORY = "DICE_21_ROLL"
BASE_TIME = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Database ────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def seed_requests(
    session_factory: async_sessionmaker[AsyncSession],
    count: int,
    *,
    handler_type: str = CATEGORY,
    emoji_type: str | None = None,
    notes: str | None = None,
    start: datetime = BASE_TIME,
    chat_prefix: str = "chat",
) -> list[int]:
    """Insert *count* pending requests, one second apart, and return their ids."""
    async with session_factory() as db:
        rows = [
            enqueue_roll(
                db,
                game_id=f"game-{i}",
                chat_id=f"{chat_prefix}-{i}",
                user_id=f"user-{i}",
                handler_type=handler_type,
                emoji_type=emoji_type,
                notes=notes,
                requested_at=start + timedelta(seconds=i),
            )
            for i in range(count)
        ]
        await db.commit()
        return [r.request_id for r in rows]


async def fetch_rows(session_factory: async_sessionmaker[AsyncSession]) -> dict[int, DiceRollRequest]:
    async with session_factory() as db:
        result = await db.execute(select(DiceRollRequest).order_by(DiceRollRequest.request_id))
        return {r.request_id: r for r in result.scalars().all()}


# ── Action provider fake ────────────────────────────────────────


class FakeDiceProvider:
    """Scripted ActionProvider.

    ``outcomes`` maps chat_id → outcome (or exception to raise); everything
    else rolls ``default``.  ``on_perform`` runs before the outcome is
    returned, e.g. to cancel a token mid-batch.
    """

    def __init__(
        self,
        outcomes: dict[str, ActionOutcome | BaseException] | None = None,
        default: ActionOutcome | None = None,
        on_perform: Callable[[str, str], Any] | None = None,
    ):
        self.outcomes = outcomes or {}
        self.default = default or RollValue(value=4)
        self.on_perform = on_perform
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def perform(self, chat_id: str, emoji: str) -> ActionOutcome:
        self.calls.append((chat_id, emoji))
        if self.on_perform is not None:
            maybe = self.on_perform(chat_id, emoji)
            if hasattr(maybe, "__await__"):
                await maybe
        outcome = self.outcomes.get(chat_id, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, chat_id: str) -> int:
        return sum(1 for c, _ in self.calls if c == chat_id)


@pytest.fixture
def provider() -> FakeDiceProvider:
    return FakeDiceProvider()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
