"""Idempotency keys repository - stored responses for Idempotency-Key replays."""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def get_stored_response(
    cur: PgCursor,
    *,
    idempotency_key: str,
    endpoint: str,
) -> tuple[int, dict[str, Any]] | None:
    """Return (response_code, response_body) recorded for this key, if any."""
    cur.execute(
        """
        SELECT response_code, response_body
        FROM idempotency_keys
        WHERE idempotency_key = %s AND endpoint = %s
        """,
        (idempotency_key, endpoint),
    )
    row = cur.fetchone()
    if row is None:
        return None
    body = row[1]
    if isinstance(body, str):
        body = json.loads(body)
    return row[0], body


def store_response(
    cur: PgCursor,
    *,
    idempotency_key: str,
    endpoint: str,
    response_code: int,
    response_body: dict[str, Any],
) -> None:
    """Record the response for a key; the first writer wins."""
    cur.execute(
        """
        INSERT INTO idempotency_keys
            (idempotency_key, endpoint, response_code, response_body)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (idempotency_key, endpoint) DO NOTHING
        """,
        (idempotency_key, endpoint, response_code, json.dumps(response_body)),
    )
