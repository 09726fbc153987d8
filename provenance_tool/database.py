"""Database operations and schema management."""
from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from loguru import logger

SCHEMA_VERSION = 2


def connect_db(path: str) -> sqlite3.Connection:
    """Connect to SQLite database."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Commit everything executed in the block, or roll it all back."""
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def ensure_meta_table(conn: sqlite3.Connection) -> None:
    """Ensure meta table exists."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version."""
    ensure_meta_table(conn)
    row = conn.execute(
        "SELECT value FROM meta WHERE key = 'schema_version'",
    ).fetchone()
    if row is None:
        return 0
    try:
        return int(row["value"])
    except (TypeError, ValueError):
        return 0


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Set schema version."""
    ensure_meta_table(conn)
    conn.execute(
        """
        INSERT INTO meta (key, value)
        VALUES ('schema_version', ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (str(version),),
    )


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Ensure database schema is up to date."""
    migrate_schema(conn)
    conn.commit()


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Migrate database to current schema version."""
    version = get_schema_version(conn)
    if version > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {version} is newer than this tool supports "
            f"(max {SCHEMA_VERSION})."
        )

    if version < 1:
        logger.debug("Applying schema version 1: workspaces, sessions, events, artifacts, decisions")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                path TEXT NOT NULL,
                name TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                agent TEXT NOT NULL,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                total_tokens INTEGER,
                summary TEXT,
                raw_path TEXT,
                metadata TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                content TEXT,
                tool_name TEXT,
                tool_input TEXT,
                tool_output TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                type TEXT NOT NULL,
                path TEXT,
                uri TEXT,
                change_type TEXT NOT NULL,
                author TEXT NOT NULL,
                size_bytes INTEGER,
                content_hash TEXT,
                metadata TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS decisions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                description TEXT NOT NULL,
                reasoning TEXT,
                alternatives TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_workspace ON sessions(workspace_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_started ON sessions(started_at)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_session ON artifacts(session_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_path ON artifacts(path)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_decisions_session ON decisions(session_id)")
        set_schema_version(conn, 1)
        version = 1

    if version < 2:
        logger.debug("Applying schema version 2: context nuggets, query log")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS context_nuggets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                type TEXT NOT NULL,
                summary TEXT NOT NULL,
                detail TEXT,
                scope_path TEXT,
                scope_symbol TEXT,
                confidence REAL DEFAULT 1.0,
                token_cost INTEGER,
                extracted_at TEXT NOT NULL,
                stale_after TEXT,
                metadata TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_nuggets_session ON context_nuggets(session_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_nuggets_scope_path ON context_nuggets(scope_path)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_nuggets_scope_symbol ON context_nuggets(scope_symbol)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_nuggets_type ON context_nuggets(type)")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS context_queries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                queried_at TEXT NOT NULL,
                query_type TEXT NOT NULL,
                query_value TEXT NOT NULL,
                workspace_id TEXT REFERENCES workspaces(id),
                nuggets_returned INTEGER DEFAULT 0,
                token_budget INTEGER,
                agent TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_queries_value ON context_queries(query_value)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_queries_workspace ON context_queries(workspace_id)")
        set_schema_version(conn, 2)


def ensure_fts(conn: sqlite3.Connection) -> bool:
    """Ensure FTS5 virtual tables and nugget mirror triggers exist."""
    try:
        conn.execute(
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS session_fts
            USING fts5(session_id UNINDEXED, workspace_id UNINDEXED, content, tokenize='porter unicode61')
            """
        )
        conn.execute(
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS nuggets_fts
            USING fts5(session_id UNINDEXED, summary, detail, tokenize='porter unicode61')
            """
        )
        conn.execute(
            """
            CREATE TRIGGER IF NOT EXISTS context_nuggets_ai
            AFTER INSERT ON context_nuggets BEGIN
                INSERT INTO nuggets_fts(rowid, session_id, summary, detail)
                VALUES (new.id, new.session_id, new.summary, COALESCE(new.detail, ''));
            END;
            """
        )
        conn.execute(
            """
            CREATE TRIGGER IF NOT EXISTS context_nuggets_ad
            AFTER DELETE ON context_nuggets BEGIN
                DELETE FROM nuggets_fts WHERE rowid = old.id;
            END;
            """
        )
        conn.commit()
        return True
    except sqlite3.OperationalError as exc:
        logger.warning(f"FTS5 unavailable: {exc}")
        return False


def init_db(path: str) -> sqlite3.Connection:
    """Open the store and bring its schema up to date."""
    conn = connect_db(path)
    ensure_schema(conn)
    ensure_fts(conn)
    return conn
