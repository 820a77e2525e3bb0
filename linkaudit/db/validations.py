"""CRUD operations for the ``validation_results`` table."""

from __future__ import annotations

import sqlite3
from typing import Iterable, Optional

from linkaudit.db.models import LinkStatus, ValidationResult


def _row_to_result(row: sqlite3.Row) -> ValidationResult:
    return ValidationResult(
        id=row["id"],
        url=row["url"],
        status=LinkStatus(row["status"]),
        status_code=row["status_code"],
        redirect_url=row["redirect_url"],
        error_message=row["error_message"],
        response_time_ms=row["response_time"],
        checked_at=row["checked_at"],
    )


def insert_results(conn: sqlite3.Connection, results: Iterable[ValidationResult]) -> list[ValidationResult]:
    """Insert validation results and return them with their new ids."""
    stored: list[ValidationResult] = []
    with conn:
        for result in results:
            cursor = conn.execute(
                """
                INSERT INTO validation_results
                    (url, status, status_code, redirect_url, error_message, response_time, checked_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.url,
                    result.status.value,
                    result.status_code,
                    result.redirect_url,
                    result.error_message,
                    result.response_time_ms,
                    result.checked_at,
                ),
            )
            result.id = cursor.lastrowid
            stored.append(result)
    return stored


def get_result(conn: sqlite3.Connection, result_id: int) -> Optional[ValidationResult]:
    """Fetch a validation result by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM validation_results WHERE id = ?", (result_id,)
    ).fetchone()
    return _row_to_result(row) if row else None


def list_results(
    conn: sqlite3.Connection,
    status: Optional[LinkStatus] = None,
    limit: Optional[int] = None,
) -> list[ValidationResult]:
    """Return results newest first, optionally filtered by ``status``."""
    sql = "SELECT * FROM validation_results"
    params: list = []
    if status is not None:
        sql += " WHERE status = ?"
        params.append(status.value)
    sql += " ORDER BY checked_at DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_result(r) for r in conn.execute(sql, params).fetchall()]


def latest_broken_urls(conn: sqlite3.Connection, limit: int) -> list[str]:
    """Distinct URLs whose most recent result is ``broken``, newest first."""
    rows = conn.execute(
        """
        SELECT v.url
        FROM   validation_results AS v
        WHERE  v.id = (SELECT MAX(id) FROM validation_results WHERE url = v.url)
          AND  v.status = 'broken'
        ORDER  BY v.checked_at DESC, v.id DESC
        LIMIT  ?
        """,
        (limit,),
    ).fetchall()
    return [r["url"] for r in rows]
