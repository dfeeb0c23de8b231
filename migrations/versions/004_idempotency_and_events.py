"""Idempotency keys and processed webhook events.

Revision ID: 004_idempotency_and_events
Revises: 003_room_blocked_dates
Create Date: 2026-09-11
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "004_idempotency_and_events"
down_revision = "003_room_blocked_dates"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "004_idempotency_and_events.sql"


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS processed_events")
    conn.exec_driver_sql("DROP TABLE IF EXISTS idempotency_keys")
