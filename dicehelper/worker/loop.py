"""Claim → process → write cycle over ``dice_roll_requests``.

Architecture
------------
Each scheduler tick runs ``run_cycle()`` once.  Rows of one ``handler_type``
are claimed oldest-first, processed one at a time, and finalized.

Claiming:
  PostgreSQL: ``SELECT … FOR UPDATE SKIP LOCKED``.  Rows locked by another
              in-flight claim are skipped, never waited on.
  SQLite:     the lock clause compiles away; two-phase mode still cannot
              double-claim because the ``processing`` mark is a
              status-guarded UPDATE (``WHERE status = 'pending'``).

Claim modes (``WORKER_CLAIM_MODE``):

  two_phase (default)
    1. short transaction: select batch, mark ``processing``, commit
    2. per row: send dice outside any transaction, then commit the terminal
       result in its own transaction.  Each row's claim is renewed right
       before its send; a row whose claim was lost is skipped unsent.
    A failure on row k never reverts rows 1..k-1, so no dice is sent twice.
    Rows whose result write never lands stay ``processing`` and are
    finalized as ``error`` by ``reclaim_stale_claims()``.

  single_transaction
    One transaction wraps claim, every dice send and every write.  Any
    unexpected error rolls the whole batch back to ``pending`` even though
    the dice for already-written rows were sent; the next cycle sends them
    again.  Kept for deployments whose producer cannot tolerate the
    ``processing`` status.

Row lifecycle:
  pending
    ↓   claim (two_phase: → processing, committed)
  completed | error
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dicehelper.db.models import DiceRollRequest, RequestStatus
from dicehelper.utils.cancel import CancellationToken
from dicehelper.utils.logger import ctx_category, ctx_request_id
from dicehelper.utils.metrics import (
    record_claims_lost,
    record_cycle,
    record_row_outcome,
    record_rows_claimed,
    record_rows_released,
    record_stale_claims,
    record_write_anomaly,
)
from dicehelper.worker.processor import RollProcessor, RowOutcome, compose_notes

logger = logging.getLogger("dicehelper.worker.loop")

MODE_TWO_PHASE = "two_phase"
MODE_SINGLE_TRANSACTION = "single_transaction"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CycleConfig:
    category: str
    batch_size: int
    worker_id: str
    mode: str = MODE_TWO_PHASE
    stale_claim_seconds: float = 300.0


@dataclass
class CycleReport:
    mode: str
    claimed: int = 0
    completed: int = 0
    errored: int = 0
    released: int = 0
    stale: int = 0
    anomalies: int = 0
    lost: int = 0
    reverted: int = 0
    rolled_back: bool = False
    error: str | None = None
    processed_ids: list[int] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None


# ─────────────────────────────────────────────────────────────────────────────
# Claimer
# ─────────────────────────────────────────────────────────────────────────────


async def select_pending_batch(
    db: AsyncSession,
    category: str,
    limit: int,
) -> list[DiceRollRequest]:
    """Lock and return up to *limit* pending rows of *category*, oldest first.

    Must run inside a transaction; the row locks last until it ends.
    """
    if limit <= 0:
        return []
    result = await db.execute(
        select(DiceRollRequest)
        .where(
            DiceRollRequest.status == RequestStatus.PENDING,
            DiceRollRequest.handler_type == category,
        )
        .order_by(DiceRollRequest.requested_at.asc(), DiceRollRequest.request_id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(result.scalars().all())


async def mark_in_progress(
    db: AsyncSession,
    rows: list[DiceRollRequest],
    worker_id: str,
) -> list[DiceRollRequest]:
    """Move *rows* to ``processing``; return only the rows this call won."""
    now = _now()
    claimed: list[DiceRollRequest] = []
    for row in rows:
        result = await db.execute(
            update(DiceRollRequest)
            .where(
                DiceRollRequest.request_id == row.request_id,
                DiceRollRequest.status == RequestStatus.PENDING,
            )
            .values(
                status=RequestStatus.PROCESSING,
                claimed_by=worker_id,
                claimed_at=now,
            )
        )
        if result.rowcount == 1:
            claimed.append(row)
        else:
            logger.debug("Request %s claimed elsewhere; skipping", row.request_id)
    return claimed


async def claim_batch(
    session_factory: async_sessionmaker[AsyncSession],
    category: str,
    limit: int,
    worker_id: str,
) -> list[DiceRollRequest]:
    """Two-phase claim: select, mark ``processing`` and commit immediately."""
    async with session_factory() as db:
        async with db.begin():
            candidates = await select_pending_batch(db, category, limit)
            if not candidates:
                return []
            return await mark_in_progress(db, candidates, worker_id)


async def release_claims(
    db: AsyncSession,
    rows: list[DiceRollRequest],
    worker_id: str,
) -> int:
    """Return claimed-but-unprocessed rows to ``pending``."""
    if not rows:
        return 0
    result = await db.execute(
        update(DiceRollRequest)
        .where(
            DiceRollRequest.request_id.in_([r.request_id for r in rows]),
            DiceRollRequest.status == RequestStatus.PROCESSING,
            DiceRollRequest.claimed_by == worker_id,
        )
        .values(status=RequestStatus.PENDING, claimed_by=None, claimed_at=None)
    )
    return result.rowcount


async def renew_claim(
    db: AsyncSession,
    row: DiceRollRequest,
    worker_id: str,
) -> bool:
    """Refresh ``claimed_at`` while *worker_id* still owns *row*.

    Returns False when the claim was lost (e.g. finalized by another
    worker's stale reclaim); the dice must not be sent in that case.
    """
    result = await db.execute(
        update(DiceRollRequest)
        .where(
            DiceRollRequest.request_id == row.request_id,
            DiceRollRequest.status == RequestStatus.PROCESSING,
            DiceRollRequest.claimed_by == worker_id,
        )
        .values(claimed_at=_now())
    )
    return result.rowcount == 1


async def reclaim_stale_claims(
    db: AsyncSession,
    category: str,
    older_than: timedelta,
) -> int:
    """Finalize ``processing`` rows abandoned by a crashed worker as ``error``.

    The dice may already have been sent for these rows, so they are not
    returned to ``pending``.  Returns the number of rows finalized.
    """
    now = _now()
    result = await db.execute(
        select(DiceRollRequest)
        .where(
            DiceRollRequest.status == RequestStatus.PROCESSING,
            DiceRollRequest.handler_type == category,
            DiceRollRequest.claimed_at < now - older_than,
        )
        .order_by(DiceRollRequest.claimed_at.asc())
        .with_for_update(skip_locked=True)
    )
    stale = list(result.scalars().all())

    for row in stale:
        logger.warning(
            "Request %s abandoned in processing by %s since %s; marking error",
            row.request_id, row.claimed_by, row.claimed_at,
        )
        row.status = RequestStatus.ERROR
        row.roll_value = None
        row.processed_at = now
        row.notes = compose_notes(
            f"Error: abandoned while processing by {row.claimed_by}.", row.notes
        )

    if stale:
        await db.flush()
    return len(stale)


# ─────────────────────────────────────────────────────────────────────────────
# Result writer
# ─────────────────────────────────────────────────────────────────────────────


async def write_result(
    db: AsyncSession,
    row: DiceRollRequest,
    outcome: RowOutcome,
    *,
    claimed_by: str | None = None,
) -> bool:
    """Persist *outcome* for *row* inside the caller's transaction.

    With *claimed_by* the update only applies while this worker still owns
    the ``processing`` claim.  Zero affected rows is logged, not raised.
    """
    stmt = update(DiceRollRequest).where(DiceRollRequest.request_id == row.request_id)
    if claimed_by is not None:
        stmt = stmt.where(
            DiceRollRequest.status == RequestStatus.PROCESSING,
            DiceRollRequest.claimed_by == claimed_by,
        )
    result = await db.execute(
        stmt.values(
            status=outcome.status,
            roll_value=outcome.roll_value,
            processed_at=_now(),
            notes=outcome.notes,
        )
    )

    if result.rowcount == 0:
        logger.warning(
            "Failed to update request %s (rowcount 0); intended status was '%s'",
            row.request_id, outcome.status,
        )
        record_write_anomaly(row.request_id)
        return False

    logger.info(
        "Updated request %s to status '%s'%s. Notes: %s",
        row.request_id,
        outcome.status,
        f" with value {outcome.roll_value}" if outcome.roll_value is not None else "",
        outcome.notes,
    )
    return True


def _tally(report: CycleReport, row: DiceRollRequest, outcome: RowOutcome, written: bool) -> None:
    report.processed_ids.append(row.request_id)
    if not written:
        report.anomalies += 1
    elif outcome.status == RequestStatus.COMPLETED:
        report.completed += 1
    else:
        report.errored += 1


# ─────────────────────────────────────────────────────────────────────────────
# Cycle orchestration
# ─────────────────────────────────────────────────────────────────────────────


async def _run_single_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    processor: RollProcessor,
    config: CycleConfig,
    token: CancellationToken,
    report: CycleReport,
) -> None:
    async with session_factory() as db:
        async with db.begin():
            rows = await select_pending_batch(db, config.category, config.batch_size)
            report.claimed = len(rows)
            if not rows:
                return
            logger.info("Found %d pending request(s)", len(rows))

            for row in rows:
                if token.cancelled:
                    logger.info("Shutdown initiated, skipping request %s", row.request_id)
                    break
                req_token = ctx_request_id.set(row.request_id)
                try:
                    logger.info("Processing for game %s, emoji %s", row.game_id, row.emoji)
                    outcome = await processor.process(row)
                    written = await write_result(db, row, outcome)
                finally:
                    ctx_request_id.reset(req_token)
                _tally(report, row, outcome, written)


async def _run_two_phase(
    session_factory: async_sessionmaker[AsyncSession],
    processor: RollProcessor,
    config: CycleConfig,
    token: CancellationToken,
    report: CycleReport,
) -> None:
    async with session_factory() as db:
        async with db.begin():
            report.stale = await reclaim_stale_claims(
                db, config.category, timedelta(seconds=config.stale_claim_seconds)
            )

    rows = await claim_batch(session_factory, config.category, config.batch_size, config.worker_id)
    report.claimed = len(rows)
    if not rows:
        return
    logger.info("Claimed %d pending request(s)", len(rows))

    for idx, row in enumerate(rows):
        if token.cancelled:
            remaining = rows[idx:]
            logger.info(
                "Shutdown initiated, releasing %d unprocessed request(s)", len(remaining)
            )
            await _release(session_factory, remaining, config.worker_id, report)
            return

        req_token = ctx_request_id.set(row.request_id)
        try:
            async with session_factory() as db:
                async with db.begin():
                    owned = await renew_claim(db, row, config.worker_id)
            if not owned:
                logger.warning("Claim on request %s lost before sending; skipping", row.request_id)
                report.lost += 1
                continue
            logger.info("Processing for game %s, emoji %s", row.game_id, row.emoji)
            outcome = await processor.process(row)
            async with session_factory() as db:
                async with db.begin():
                    written = await write_result(
                        db, row, outcome, claimed_by=config.worker_id
                    )
        except Exception:
            # The dice may have been sent; leave this row in processing for
            # stale reclaim and hand the untouched rest back before stopping.
            logger.error(
                "Result for request %s not recorded; left in processing", row.request_id
            )
            await _release(session_factory, rows[idx + 1:], config.worker_id, report)
            raise
        finally:
            ctx_request_id.reset(req_token)
        _tally(report, row, outcome, written)


async def _release(
    session_factory: async_sessionmaker[AsyncSession],
    rows: list[DiceRollRequest],
    worker_id: str,
    report: CycleReport,
) -> None:
    if not rows:
        return
    try:
        async with session_factory() as db:
            async with db.begin():
                report.released += await release_claims(db, rows, worker_id)
    except Exception:
        logger.exception(
            "Could not release %d claimed request(s); stale reclaim will finalize them",
            len(rows),
        )


async def run_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    processor: RollProcessor,
    config: CycleConfig,
    token: CancellationToken,
) -> CycleReport:
    """Run one claim → process → write cycle and return what happened.

    Never raises for store or provider failures; they are logged and
    reported in ``CycleReport.error``.
    """
    report = CycleReport(mode=config.mode)
    if token.cancelled:
        return report

    started = time.monotonic()
    cat_token = ctx_category.set(config.category)
    try:
        if config.mode == MODE_SINGLE_TRANSACTION:
            await _run_single_transaction(session_factory, processor, config, token, report)
        else:
            await _run_two_phase(session_factory, processor, config, token, report)
    except Exception as exc:
        report.error = f"{type(exc).__name__}: {exc}"
        if config.mode == MODE_SINGLE_TRANSACTION:
            # Everything written in this cycle was reverted to pending.
            report.rolled_back = True
            report.reverted = report.completed + report.errored
            report.completed = 0
            report.errored = 0
            logger.exception(
                "Error during poll cycle; transaction rolled back (%d written row(s) reverted)",
                report.reverted,
            )
        else:
            logger.exception("Error during poll cycle")
    finally:
        ctx_category.reset(cat_token)

    record_cycle(config.mode, time.monotonic() - started, report.failed)
    record_rows_claimed(report.claimed)
    record_rows_released(report.released)
    record_stale_claims(report.stale)
    record_claims_lost(report.lost)
    for _ in range(report.completed):
        record_row_outcome(RequestStatus.COMPLETED)
    for _ in range(report.errored):
        record_row_outcome(RequestStatus.ERROR)
    return report
