"""CRUD operations for the ``scanned_links`` table.

Scanned links are append-only: each scan inserts a fresh batch, nothing is
updated in place.
"""

from __future__ import annotations

import sqlite3
from time import time
from typing import Iterable, Optional

from linkaudit.db.models import LinkType, Priority, ScannedLink


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_link(row: sqlite3.Row) -> ScannedLink:
    return ScannedLink(
        id=row["id"],
        url=row["url"],
        source_file=row["source_file"],
        source_line=row["source_line"],
        link_type=LinkType(row["link_type"]),
        priority=Priority(row["priority"]),
        context=row["context"] or "",
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def insert_links(conn: sqlite3.Connection, links: Iterable[ScannedLink]) -> int:
    """Insert a batch of scanned links in one transaction.

    Returns:
        The number of rows written.
    """
    now = int(time())
    rows = [
        (
            link.url,
            link.source_file,
            link.source_line,
            link.link_type.value,
            link.priority.value,
            link.context,
            now,
            now,
        )
        for link in links
    ]
    if not rows:
        return 0
    with conn:
        conn.executemany(
            """
            INSERT INTO scanned_links
                (url, source_file, source_line, link_type, priority, context, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
    return len(rows)


def get_link(conn: sqlite3.Connection, link_id: int) -> Optional[ScannedLink]:
    """Fetch a single scanned link by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM scanned_links WHERE id = ?", (link_id,)
    ).fetchone()
    return _row_to_link(row) if row else None


def find_links_by_url(conn: sqlite3.Connection, url: str) -> list[ScannedLink]:
    """Return every recorded occurrence of *url*, newest first."""
    rows = conn.execute(
        "SELECT * FROM scanned_links WHERE url = ? ORDER BY created_at DESC, id DESC",
        (url,),
    ).fetchall()
    return [_row_to_link(r) for r in rows]


def list_links(
    conn: sqlite3.Connection,
    link_type: Optional[LinkType] = None,
    limit: Optional[int] = None,
) -> list[ScannedLink]:
    """Return scanned links, optionally filtered by ``link_type``."""
    sql = "SELECT * FROM scanned_links"
    params: list = []
    if link_type is not None:
        sql += " WHERE link_type = ?"
        params.append(link_type.value)
    sql += " ORDER BY id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_link(r) for r in conn.execute(sql, params).fetchall()]
