"""Room blocked dates with a gist exclusion on overlapping ranges.

The constraint is the last guard behind the locked re-check in
create_blocked_date: two concurrent blocks on one room cannot both commit.

Revision ID: 003_room_blocked_dates
Revises: 002_refunds
Create Date: 2026-09-10
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "003_room_blocked_dates"
down_revision = "002_refunds"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "003_room_blocked_dates.sql"


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS room_blocked_dates")
    # btree_gist is kept: other indexes may depend on it.
