"""dice_roll_requests table.

Revision ID: v001
Revises:
Create Date: 2026-09-02 00:00:00.000000

Matches the table the game bot already writes to; safe to run against an
empty database only.
"""
from __future__ import annotations
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "v001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "dice_roll_requests",
        sa.Column("request_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("game_id", sa.String(128), nullable=False),
        sa.Column("chat_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("handler_type", sa.String(64), nullable=False),
        sa.Column("emoji_type", sa.String(16), nullable=True),
        sa.Column("notes", sa.String(250), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("roll_value", sa.Integer(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_dice_roll_requests_handler_type", "dice_roll_requests", ["handler_type"])
    op.create_index("ix_dice_roll_requests_status", "dice_roll_requests", ["status"])
    op.create_index(
        "ix_dice_roll_requests_claim",
        "dice_roll_requests",
        ["handler_type", "status", "requested_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_dice_roll_requests_claim", table_name="dice_roll_requests")
    op.drop_index("ix_dice_roll_requests_status", table_name="dice_roll_requests")
    op.drop_index("ix_dice_roll_requests_handler_type", table_name="dice_roll_requests")
    op.drop_table("dice_roll_requests")
