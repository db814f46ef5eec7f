"""Per-row processing: one dice send, mapped to a terminal row outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dicehelper.connectors.dice_client import (
    ActionFailure,
    ActionOutcome,
    ActionProvider,
    MalformedResult,
    RollValue,
    value_in_domain,
)
from dicehelper.db.models import NOTES_MAX_LENGTH, DiceRollRequest, RequestStatus

logger = logging.getLogger("dicehelper.worker.processor")

DIAGNOSTIC_MAX_LENGTH = 150


@dataclass(frozen=True)
class RowOutcome:
    status: str
    roll_value: int | None
    notes: str


def compose_notes(note: str, prior: str | None) -> str:
    """Prepend *note* to the row's existing notes, bounded to the column size."""
    return f"{note} {prior or ''}".rstrip()[:NOTES_MAX_LENGTH]


def describe_failure(failure: ActionFailure) -> str:
    if failure.code is not None:
        return f"API Err {failure.code}: {failure.description}"
    return failure.description


class RollProcessor:
    """Turns a claimed row into a ``RowOutcome`` by calling the provider once."""

    def __init__(self, provider: ActionProvider, identity: str):
        self.provider = provider
        self.identity = identity

    async def process(self, row: DiceRollRequest) -> RowOutcome:
        emoji = row.emoji
        try:
            outcome: ActionOutcome = await self.provider.perform(row.chat_id, emoji)
        except Exception as exc:
            logger.error(
                "Dice send to chat %s failed: %s", row.chat_id, exc,
            )
            code = getattr(exc, "code", None)
            outcome = ActionFailure(
                description=str(exc) or type(exc).__name__,
                code=code if isinstance(code, int) else None,
            )

        if isinstance(outcome, RollValue) and value_in_domain(emoji, outcome.value):
            logger.info("Dice '%s' sent, value %d", emoji, outcome.value)
            return RowOutcome(
                status=RequestStatus.COMPLETED,
                roll_value=outcome.value,
                notes=compose_notes(
                    f"processed by {self.identity}, value={outcome.value}.", row.notes
                ),
            )

        if isinstance(outcome, ActionFailure):
            diagnostic = describe_failure(outcome)[:DIAGNOSTIC_MAX_LENGTH]
            logger.warning("Dice '%s' not sent: %s", emoji, diagnostic)
            return RowOutcome(
                status=RequestStatus.ERROR,
                roll_value=None,
                notes=compose_notes(f"Error: {diagnostic}.", row.notes),
            )

        # MalformedResult, or a RollValue outside the emoji's domain.
        raw = outcome.raw if isinstance(outcome, MalformedResult) else repr(outcome)
        logger.error("Dice '%s' sent but no valid result: %s", emoji, raw)
        return RowOutcome(
            status=RequestStatus.ERROR,
            roll_value=None,
            notes=compose_notes("Error: send succeeded but no valid result.", row.notes),
        )
