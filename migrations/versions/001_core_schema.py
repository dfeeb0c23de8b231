"""Core tables: users, businesses, roles, rooms, orders, bookings, payments.

Revision ID: 001_core_schema
Revises: None
Create Date: 2026-09-02
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_core_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_core_schema.sql"


def upgrade() -> None:
    sql = _SQL_FILE.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)


def downgrade() -> None:
    conn = op.get_bind()
    for table in (
        "payments",
        "bookings",
        "order_items",
        "orders",
        "products",
        "rooms",
        "user_business_roles",
        "businesses",
        "users",
    ):
        conn.exec_driver_sql(f"DROP TABLE IF EXISTS {table}")
