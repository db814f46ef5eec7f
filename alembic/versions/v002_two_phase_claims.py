"""Claim ownership columns for two-phase claiming.

Revision ID: v002
Revises: v001
Create Date: 2026-09-20 00:00:00.000000

Adds ``claimed_by`` / ``claimed_at``, written when a worker moves a row to
``processing``.  Both are nullable, so existing producers keep working.
"""
from __future__ import annotations
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "v002"
down_revision: Union[str, None] = "v001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("dice_roll_requests") as batch_op:
        batch_op.add_column(sa.Column("claimed_by", sa.String(128), nullable=True))
        batch_op.add_column(sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("dice_roll_requests") as batch_op:
        batch_op.drop_column("claimed_at")
        batch_op.drop_column("claimed_by")
