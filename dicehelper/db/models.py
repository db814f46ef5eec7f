"""ORM model for the shared dice roll request table."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DEFAULT_EMOJI = "🎲"
NOTES_MAX_LENGTH = 250


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RequestStatus:
    PENDING = "pending"
    # Only written in two-phase claim mode.
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    TERMINAL = (COMPLETED, ERROR)


class GroupKey(NamedTuple):
    game_id: str
    chat_id: str
    user_id: str


# ── Dice roll requests (durable job queue) ─────────────────────


class DiceRollRequest(Base):
    """One requested dice roll.

    Rows are inserted by the game bot with ``status='pending'`` and finalized
    by exactly one helper worker to ``completed`` or ``error``.  The worker
    never deletes rows.
    """

    __tablename__ = "dice_roll_requests"

    request_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chat_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Partitions the table into independent queues, one per helper category.
    handler_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    emoji_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(NOTES_MAX_LENGTH), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RequestStatus.PENDING, index=True
    )
    roll_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_dice_roll_requests_claim", "handler_type", "status", "requested_at"),
    )

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.game_id, self.chat_id, self.user_id)

    @property
    def emoji(self) -> str:
        return self.emoji_type or DEFAULT_EMOJI

    def __repr__(self) -> str:
        return (
            f"<DiceRollRequest(request_id={self.request_id}, "
            f"handler_type={self.handler_type}, status={self.status})>"
        )
