"""Helper for inserting a pending dice roll request.

The game bot owns request creation in production; this mirrors its insert
for tooling and tests.  The row is NOT committed here; the caller must
``await db.commit()`` so the request lands atomically with whatever game
state produced it.
"""

from __future__ import annotations

from datetime import datetime, timezone

from dicehelper.db.models import DiceRollRequest, RequestStatus


def enqueue_roll(
    db_session,
    *,
    game_id: str,
    chat_id: str,
    user_id: str,
    handler_type: str,
    emoji_type: str | None = None,
    notes: str | None = None,
    requested_at: datetime | None = None,
) -> DiceRollRequest:
    """Add a pending DiceRollRequest to *db_session*.

    Args:
        db_session:   Active AsyncSession (or sync Session for tests).
        handler_type: Category of the helper worker that should serve it.
        emoji_type:   Dice emoji; the worker falls back to 🎲 when None.
        requested_at: Override the FIFO timestamp (defaults to now).
    """
    request = DiceRollRequest(
        game_id=game_id,
        chat_id=chat_id,
        user_id=user_id,
        handler_type=handler_type,
        emoji_type=emoji_type,
        notes=notes,
        status=RequestStatus.PENDING,
        requested_at=requested_at or datetime.now(timezone.utc),
    )
    db_session.add(request)
    return request
