"""Refund requests with one active refund per resource.

Revision ID: 002_refunds
Revises: 001_core_schema
Create Date: 2026-09-04
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "002_refunds"
down_revision = "001_core_schema"
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "002_refunds.sql"


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP TABLE IF EXISTS refunds")
