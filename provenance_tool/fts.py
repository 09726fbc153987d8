"""Full-text search over session digests and nugget text."""
from __future__ import annotations

import re
import sqlite3
from typing import List, Tuple

from loguru import logger

_SPLIT_PATTERN = re.compile(r"[\s\-_/\\]+")
_STRIP_PATTERN = re.compile(r"[^A-Za-z0-9]")
_FTS_OPERATORS = {"AND", "OR", "NOT", "NEAR"}


def build_fts_query(text: str) -> str:
    """Turn free text into an FTS5 MATCH expression.

    A quoted phrase is passed through as-is. Anything else is split on
    whitespace and path separators, stripped to alphanumerics and OR-joined.
    """
    stripped = text.strip()
    if len(stripped) >= 2 and stripped.startswith('"') and stripped.endswith('"'):
        return stripped
    tokens = []
    for part in _SPLIT_PATTERN.split(stripped):
        token = _STRIP_PATTERN.sub("", part)
        if token and token not in _FTS_OPERATORS:
            tokens.append(token)
    if not tokens:
        return ""
    if len(tokens) == 1:
        return tokens[0]
    return " OR ".join(tokens)


def index_session(conn: sqlite3.Connection, session_id: str, workspace_id: str, content: str) -> None:
    """Store a session digest, replacing any earlier one for the session."""
    conn.execute("DELETE FROM session_fts WHERE session_id = ?", (session_id,))
    conn.execute(
        "INSERT INTO session_fts (session_id, workspace_id, content) VALUES (?, ?, ?)",
        (session_id, workspace_id, content),
    )


def remove_session_from_index(conn: sqlite3.Connection, session_id: str) -> None:
    """Drop the session digest and every nugget row indexed for the session."""
    conn.execute("DELETE FROM session_fts WHERE session_id = ?", (session_id,))
    conn.execute("DELETE FROM nuggets_fts WHERE session_id = ?", (session_id,))


def search_sessions(
    conn: sqlite3.Connection,
    text: str,
    workspace_id: str,
    limit: int = 20,
) -> List[Tuple[str, float]]:
    """Return (session_id, rank) pairs, most relevant first."""
    query = build_fts_query(text)
    if not query:
        return []
    try:
        rows = conn.execute(
            """
            SELECT session_id, bm25(session_fts) AS rank
            FROM session_fts
            WHERE session_fts MATCH ? AND workspace_id = ?
            ORDER BY rank
            LIMIT ?
            """,
            (query, workspace_id, limit),
        ).fetchall()
    except sqlite3.OperationalError as exc:
        logger.debug(f"Session search failed for {query!r}: {exc}")
        return []
    return [(row["session_id"], float(row["rank"])) for row in rows]


def search_nuggets(
    conn: sqlite3.Connection,
    text: str,
    workspace_id: str,
    limit: int = 50,
) -> List[Tuple[int, float]]:
    """Return (nugget_id, rank) pairs, most relevant first."""
    query = build_fts_query(text)
    if not query:
        return []
    try:
        rows = conn.execute(
            """
            SELECT nuggets_fts.rowid AS nugget_id, bm25(nuggets_fts) AS rank
            FROM nuggets_fts
            JOIN sessions ON sessions.id = nuggets_fts.session_id
            WHERE nuggets_fts MATCH ? AND sessions.workspace_id = ?
            ORDER BY rank
            LIMIT ?
            """,
            (query, workspace_id, limit),
        ).fetchall()
    except sqlite3.OperationalError as exc:
        logger.debug(f"Nugget search failed for {query!r}: {exc}")
        return []
    return [(int(row["nugget_id"]), float(row["rank"])) for row in rows]


def count_index_rows(conn: sqlite3.Connection, session_id: str) -> dict:
    sessions = conn.execute(
        "SELECT COUNT(*) AS n FROM session_fts WHERE session_id = ?", (session_id,)
    ).fetchone()
    nuggets = conn.execute(
        "SELECT COUNT(*) AS n FROM nuggets_fts WHERE session_id = ?", (session_id,)
    ).fetchone()
    return {"sessions": int(sessions["n"]), "nuggets": int(nuggets["n"])}
