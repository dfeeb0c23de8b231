"""Tests for database layer (no real DB needed)."""

import os
from unittest.mock import MagicMock, patch

import pytest

from cityventure.infra.db import for_update, get_conn, txn


class TestGetConn:
    def test_missing_database_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()

    def test_connects_with_dsn(self):
        env = {"DATABASE_URL": "postgresql://u:p@h/db"}
        with patch.dict(os.environ, env, clear=True), \
             patch("cityventure.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
        mock_connect.assert_called_once_with("postgresql://u:p@h/db")


class TestTxn:
    def test_commits_and_closes_owned_connection(self):
        conn = MagicMock()
        with patch("cityventure.infra.db.get_conn", return_value=conn):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_rolls_back_on_error(self):
        conn = MagicMock()
        with patch("cityventure.infra.db.get_conn", return_value=conn):
            with pytest.raises(ValueError):
                with txn():
                    raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_borrowed_connection_stays_open(self):
        conn = MagicMock()
        with txn(conn):
            pass

        conn.commit.assert_called_once()
        conn.close.assert_not_called()


class TestForUpdate:
    def test_appends_clause(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("room-1",)

        row = for_update(cur, "SELECT id FROM rooms WHERE id = %s;", ("room-1",))

        assert row == ("room-1",)
        cur.execute.assert_called_once_with(
            "SELECT id FROM rooms WHERE id = %s FOR UPDATE", ("room-1",)
        )

    def test_nowait(self):
        cur = MagicMock()
        for_update(cur, "SELECT 1", nowait=True)
        assert cur.execute.call_args.args[0].endswith("FOR UPDATE NOWAIT")

    def test_skip_locked(self):
        cur = MagicMock()
        for_update(cur, "SELECT 1", skip_locked=True)
        assert cur.execute.call_args.args[0].endswith("FOR UPDATE SKIP LOCKED")

    def test_nowait_and_skip_locked_conflict(self):
        with pytest.raises(ValueError):
            for_update(MagicMock(), "SELECT 1", nowait=True, skip_locked=True)
