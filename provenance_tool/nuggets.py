"""Nugget persistence, scoped lookups and the context query log."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    import sqlite3
    from .models import Nugget

DEFAULT_QUERY_LIMIT = 100


def row_to_nugget(row: sqlite3.Row) -> Nugget:
    """Convert a database row to a Nugget."""
    from .models import Nugget

    return Nugget(
        id=row["id"],
        session_id=row["session_id"],
        type=row["type"],
        summary=row["summary"],
        detail=row["detail"],
        scope_path=row["scope_path"],
        scope_symbol=row["scope_symbol"],
        confidence=row["confidence"] if row["confidence"] is not None else 1.0,
        token_cost=row["token_cost"],
        extracted_at=row["extracted_at"],
        stale_after=row["stale_after"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )


def write_nugget(conn: sqlite3.Connection, nugget: Nugget, record_decision: bool = True) -> int:
    """Insert a nugget row without committing; the index row follows by trigger."""
    from .store import insert_decision
    from .utils import estimate_tokens

    token_cost = nugget.token_cost
    if token_cost is None:
        token_cost = estimate_tokens(nugget.summary + (nugget.detail or ""))
    cursor = conn.execute(
        """
        INSERT INTO context_nuggets (session_id, type, summary, detail, scope_path, scope_symbol,
                                     confidence, token_cost, extracted_at, stale_after, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            nugget.session_id,
            nugget.type,
            nugget.summary,
            nugget.detail,
            nugget.scope_path,
            nugget.scope_symbol,
            nugget.confidence,
            token_cost,
            nugget.extracted_at,
            nugget.stale_after,
            json.dumps(nugget.metadata) if nugget.metadata else None,
        ),
    )
    nugget.id = int(cursor.lastrowid)
    nugget.token_cost = token_cost
    if record_decision and nugget.type == "decision":
        insert_decision(conn, nugget.session_id, nugget.summary, nugget.detail, nugget.alternatives)
    return nugget.id


def insert_nugget(conn: sqlite3.Connection, nugget: Nugget) -> int:
    """Insert a single nugget (and its index row) and return its ID."""
    from .database import transaction

    with transaction(conn):
        return write_nugget(conn, nugget)


def insert_nuggets(conn: sqlite3.Connection, nuggets: Iterable[Nugget]) -> List[Nugget]:
    """Insert nuggets in one transaction; ids are assigned in place."""
    from .database import transaction

    stored = list(nuggets)
    with transaction(conn):
        for nugget in stored:
            write_nugget(conn, nugget)
    return stored


def get_nuggets_by_session(conn: sqlite3.Connection, session_id: str) -> List[Nugget]:
    rows = conn.execute(
        "SELECT * FROM context_nuggets WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [row_to_nugget(row) for row in rows]


def get_nuggets_by_ids(conn: sqlite3.Connection, ids: Iterable[int]) -> List[Nugget]:
    id_list = list(ids)
    if not id_list:
        return []
    placeholders = ",".join("?" for _ in id_list)
    rows = conn.execute(
        f"SELECT * FROM context_nuggets WHERE id IN ({placeholders}) ORDER BY id",
        id_list,
    ).fetchall()
    return [row_to_nugget(row) for row in rows]


def has_nuggets(conn: sqlite3.Connection, session_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM context_nuggets WHERE session_id = ? LIMIT 1",
        (session_id,),
    ).fetchone()
    return row is not None


def delete_nuggets_for_session(conn: sqlite3.Connection, session_id: str) -> int:
    """Delete a session's nuggets, derived decisions and both index entries."""
    from .database import transaction
    from .fts import remove_session_from_index

    with transaction(conn):
        cursor = conn.execute("DELETE FROM context_nuggets WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM decisions WHERE session_id = ?", (session_id,))
        remove_session_from_index(conn, session_id)
    return cursor.rowcount


def _type_clause(types: Optional[List[str]], query: str, params: list) -> str:
    if types:
        placeholders = ",".join("?" for _ in types)
        query += f" AND context_nuggets.type IN ({placeholders})"
        params.extend(types)
    return query


def find_nuggets(
    conn: sqlite3.Connection,
    workspace_id: str,
    path: Optional[str] = None,
    symbol: Optional[str] = None,
    types: Optional[List[str]] = None,
    since: Optional[str] = None,
    limit: int = DEFAULT_QUERY_LIMIT,
) -> List[Nugget]:
    """Nuggets in a workspace scoped to a path (exact or below it) and/or a symbol."""
    query = """
        SELECT context_nuggets.* FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ?
    """
    params: list[object] = [workspace_id]
    if path:
        path = path.rstrip("/")
        query += (
            " AND (context_nuggets.scope_path = ?"
            " OR substr(context_nuggets.scope_path, 1, length(?) + 1) = ? || '/')"
        )
        params.extend([path, path, path])
    if symbol:
        query += " AND context_nuggets.scope_symbol = ?"
        params.append(symbol)
    query = _type_clause(types, query, params)
    if since:
        query += " AND context_nuggets.extracted_at >= ?"
        params.append(since)
    query += " ORDER BY context_nuggets.confidence DESC, context_nuggets.id DESC LIMIT ?"
    params.append(limit)
    return [row_to_nugget(row) for row in conn.execute(query, params).fetchall()]


def find_nuggets_by_workspace(
    conn: sqlite3.Connection,
    workspace_id: str,
    types: Optional[List[str]] = None,
    limit: int = DEFAULT_QUERY_LIMIT,
) -> List[Nugget]:
    query = """
        SELECT context_nuggets.* FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ?
    """
    params: list[object] = [workspace_id]
    query = _type_clause(types, query, params)
    query += " ORDER BY context_nuggets.confidence DESC, context_nuggets.id DESC LIMIT ?"
    params.append(limit)
    return [row_to_nugget(row) for row in conn.execute(query, params).fetchall()]


def find_superseding_nugget(conn: sqlite3.Connection, nugget: Nugget) -> Optional[int]:
    """Id of the newest same-scope, same-type nugget from another session, if newer."""
    if nugget.id is None or not nugget.scope_path:
        return None
    row = conn.execute(
        """
        SELECT newer.id FROM context_nuggets AS newer
        JOIN sessions AS newer_session ON newer_session.id = newer.session_id
        JOIN sessions AS own_session ON own_session.id = ?
        WHERE newer.scope_path = ?
          AND newer.type = ?
          AND newer.id > ?
          AND newer.session_id != ?
          AND newer_session.workspace_id = own_session.workspace_id
        ORDER BY newer.id DESC
        LIMIT 1
        """,
        (nugget.session_id, nugget.scope_path, nugget.type, nugget.id, nugget.session_id),
    ).fetchone()
    return int(row["id"]) if row else None


def log_context_query(
    conn: sqlite3.Connection,
    query_type: str,
    query_value: str,
    workspace_id: Optional[str],
    nuggets_returned: int,
    token_budget: Optional[int],
    agent: Optional[str] = None,
) -> int:
    """Record a served context query for coverage analysis."""
    from .utils import utc_now

    cursor = conn.execute(
        """
        INSERT INTO context_queries (queried_at, query_type, query_value, workspace_id,
                                     nuggets_returned, token_budget, agent)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (utc_now(), query_type, query_value, workspace_id, nuggets_returned, token_budget, agent),
    )
    conn.commit()
    return int(cursor.lastrowid)


def get_query_gaps(conn: sqlite3.Connection, workspace_id: str, limit: int = 20) -> List[dict]:
    """Paths queried more often than nuggets cover them."""
    rows = conn.execute(
        """
        SELECT q.query_value AS path,
               COUNT(*) AS query_count,
               (SELECT COUNT(*) FROM context_nuggets AS n
                JOIN sessions AS s ON s.id = n.session_id
                WHERE s.workspace_id = q.workspace_id AND n.scope_path = q.query_value) AS nugget_count
        FROM context_queries AS q
        WHERE q.workspace_id = ? AND q.query_type IN ('path', 'combined')
        GROUP BY q.query_value
        HAVING query_count > nugget_count
        ORDER BY query_count DESC, path
        LIMIT ?
        """,
        (workspace_id, limit),
    ).fetchall()
    return [
        {"path": row["path"], "query_count": row["query_count"], "nugget_count": row["nugget_count"]}
        for row in rows
    ]


def get_coverage(conn: sqlite3.Connection, workspace_id: str, limit: int = 30) -> dict:
    """Nugget totals for a workspace and the most covered paths."""
    total = conn.execute(
        """
        SELECT COUNT(*) AS n FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ?
        """,
        (workspace_id,),
    ).fetchone()["n"]
    by_type = conn.execute(
        """
        SELECT context_nuggets.type AS type, COUNT(*) AS n FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ?
        GROUP BY context_nuggets.type
        ORDER BY n DESC, type
        """,
        (workspace_id,),
    ).fetchall()
    by_path = conn.execute(
        """
        SELECT context_nuggets.scope_path AS path, COUNT(*) AS n FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ? AND context_nuggets.scope_path IS NOT NULL
        GROUP BY context_nuggets.scope_path
        ORDER BY n DESC, path
        LIMIT ?
        """,
        (workspace_id, limit),
    ).fetchall()
    return {
        "total": int(total),
        "by_type": {row["type"]: row["n"] for row in by_type},
        "paths": [{"path": row["path"], "nuggets": row["n"]} for row in by_path],
    }
