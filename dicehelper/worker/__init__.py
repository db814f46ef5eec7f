"""Helper worker package.

The worker serves one ``handler_type`` of the ``dice_roll_requests`` table:

    DATABASE_URL=postgres://… HELPER_BOT_TOKEN=… python -m dicehelper.worker
    WORKER_CATEGORY=DICE_21_ROLL WORKER_BATCH_SIZE=3 python -m dicehelper.worker

Run one process per category; any number of processes may share the table.
The worker uses:
- SELECT … FOR UPDATE SKIP LOCKED for PostgreSQL (proper distributed locking).
- A status-guarded claim UPDATE, which also covers SQLite (dev only).
"""
