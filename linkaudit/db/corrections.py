"""CRUD operations for the ``applied_corrections`` table.

A row is written only once a correction has been written back to a source
file, so ``rollback_id`` and ``rollback_data`` are always present.
"""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from linkaudit.db.models import AppliedCorrection, CorrectionType


def _row_to_correction(row: sqlite3.Row) -> AppliedCorrection:
    return AppliedCorrection(
        id=row["id"],
        original_url=row["original_url"],
        corrected_url=row["corrected_url"],
        file_path=row["file_path"],
        source_line=row["source_line"],
        correction_type=CorrectionType(row["correction_type"]),
        confidence=row["confidence"],
        rollback_id=row["rollback_id"],
        applied_at=row["applied_at"],
        rollback_data=row["rollback_data"],
    )


def insert_correction(conn: sqlite3.Connection, correction: AppliedCorrection) -> AppliedCorrection:
    """Persist an applied correction.

    Raises:
        ValueError: If the correction carries no rollback information.
    """
    if not correction.rollback_id or not correction.rollback_data:
        raise ValueError("Applied corrections must carry rollback_id and rollback_data")

    with conn:
        cursor = conn.execute(
            """
            INSERT INTO applied_corrections
                (original_url, corrected_url, file_path, source_line, correction_type,
                 confidence, rollback_id, applied_at, rollback_data)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                correction.original_url,
                correction.corrected_url,
                correction.file_path,
                correction.source_line,
                correction.correction_type.value,
                correction.confidence,
                correction.rollback_id,
                correction.applied_at,
                correction.rollback_data,
            ),
        )
    correction.id = cursor.lastrowid
    return correction


def get_by_rollback_id(conn: sqlite3.Connection, rollback_id: str) -> Optional[AppliedCorrection]:
    """Fetch a correction by its rollback id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM applied_corrections WHERE rollback_id = ?", (rollback_id,)
    ).fetchone()
    return _row_to_correction(row) if row else None


def is_rolled_back(conn: sqlite3.Connection, rollback_id: str) -> bool:
    row = conn.execute(
        "SELECT rolled_back_at FROM applied_corrections WHERE rollback_id = ?",
        (rollback_id,),
    ).fetchone()
    return bool(row and row["rolled_back_at"])


def mark_rolled_back(conn: sqlite3.Connection, rollback_id: str) -> None:
    """Record that a correction has been undone.

    Raises:
        ValueError: If ``rollback_id`` is unknown.
    """
    with conn:
        cursor = conn.execute(
            "UPDATE applied_corrections SET rolled_back_at = ? WHERE rollback_id = ?",
            (int(time()), rollback_id),
        )
    if cursor.rowcount == 0:
        raise ValueError(f"Correction not found: {rollback_id!r}")


def list_corrections(
    conn: sqlite3.Connection,
    include_rolled_back: bool = False,
) -> list[AppliedCorrection]:
    """Return applied corrections, newest first."""
    sql = "SELECT * FROM applied_corrections"
    if not include_rolled_back:
        sql += " WHERE rolled_back_at IS NULL"
    sql += " ORDER BY applied_at DESC, id DESC"
    return [_row_to_correction(r) for r in conn.execute(sql).fetchall()]
