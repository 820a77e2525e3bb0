"""Storage for user resource requests (reports of missing pages/files)."""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from linkaudit.db.models import ResourceRequest


def _row_to_request(row: sqlite3.Row) -> ResourceRequest:
    return ResourceRequest(
        id=row["id"],
        user_email=row["user_email"],
        requested_url=row["requested_url"],
        source_url=row["source_url"],
        message=row["message"],
        created_at=row["created_at"],
    )


def create_request(
    conn: sqlite3.Connection,
    user_email: str,
    requested_url: str,
    source_url: str,
    message: Optional[str] = None,
) -> ResourceRequest:
    """Insert a resource request and return it."""
    if not user_email.strip():
        raise ValueError("user_email must not be empty")
    if not requested_url.strip():
        raise ValueError("requested_url must not be empty")

    now = int(time())
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO resource_requests (user_email, requested_url, source_url, message, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_email.strip().lower(), requested_url, source_url, message, now),
        )
    return ResourceRequest(
        id=cursor.lastrowid,
        user_email=user_email.strip().lower(),
        requested_url=requested_url,
        source_url=source_url,
        message=message,
        created_at=now,
    )


def count_since(conn: sqlite3.Connection, user_email: str, since: int) -> int:
    """Number of requests by *user_email* created at or after *since*."""
    row = conn.execute(
        "SELECT COUNT(*) FROM resource_requests WHERE user_email = ? AND created_at >= ?",
        (user_email.strip().lower(), since),
    ).fetchone()
    return row[0]


def top_requested(conn: sqlite3.Connection, since: int, limit: int = 10) -> list[tuple[str, int]]:
    """Most frequently requested URLs since *since*, as ``(url, count)``."""
    rows = conn.execute(
        """
        SELECT requested_url, COUNT(*) AS n
        FROM   resource_requests
        WHERE  created_at >= ?
        GROUP  BY requested_url
        ORDER  BY n DESC, requested_url ASC
        LIMIT  ?
        """,
        (since, limit),
    ).fetchall()
    return [(r["requested_url"], r["n"]) for r in rows]


def list_requests(conn: sqlite3.Connection, limit: int = 50) -> list[ResourceRequest]:
    rows = conn.execute(
        "SELECT * FROM resource_requests ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_request(r) for r in rows]
