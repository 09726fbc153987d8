"""Workspace, session, event, artifact and decision rows."""
from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    import sqlite3
    from .models import Artifact, Decision, Event, ParsedSession, Session, Workspace


def upsert_workspace(conn: sqlite3.Connection, workspace: Workspace) -> None:
    """Insert a workspace, or refresh its path and name."""
    from .utils import utc_now

    now = utc_now()
    conn.execute(
        """
        INSERT INTO workspaces (id, type, path, name, metadata, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            path = excluded.path,
            name = excluded.name,
            updated_at = excluded.updated_at
        """,
        (
            workspace.id,
            workspace.type,
            workspace.path,
            workspace.name,
            json.dumps(workspace.metadata) if workspace.metadata else None,
            now,
            now,
        ),
    )


def get_workspace(conn: sqlite3.Connection, workspace_id: str) -> Optional[Workspace]:
    from .models import Workspace

    row = conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
    if row is None:
        return None
    return Workspace(
        id=row["id"],
        path=row["path"],
        type=row["type"],
        name=row["name"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )


def upsert_session(conn: sqlite3.Connection, session: Session) -> None:
    """Insert a session row; a re-parse may only extend its end time and token total."""
    conn.execute(
        """
        INSERT INTO sessions (id, workspace_id, agent, started_at, ended_at, total_tokens, summary, raw_path, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            ended_at = COALESCE(excluded.ended_at, sessions.ended_at),
            total_tokens = COALESCE(excluded.total_tokens, sessions.total_tokens)
        """,
        (
            session.id,
            session.workspace.id,
            session.agent,
            session.started_at,
            session.ended_at,
            session.total_tokens,
            session.summary,
            session.raw_path,
            json.dumps(session.metadata) if session.metadata else None,
        ),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    from .models import Session, Workspace

    workspace = Workspace(
        id=row["workspace_id"],
        path=row["workspace_path"] or "",
        type=row["workspace_type"] or "folder",
        name=row["workspace_name"],
    )
    return Session(
        id=row["id"],
        workspace=workspace,
        agent=row["agent"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        total_tokens=row["total_tokens"],
        raw_path=row["raw_path"],
        summary=row["summary"],
        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
    )


_SESSION_SELECT = """
    SELECT sessions.*, workspaces.path AS workspace_path, workspaces.type AS workspace_type,
           workspaces.name AS workspace_name
    FROM sessions
    LEFT JOIN workspaces ON workspaces.id = sessions.workspace_id
"""


def get_session(conn: sqlite3.Connection, session_id: str) -> Optional[Session]:
    row = conn.execute(_SESSION_SELECT + " WHERE sessions.id = ?", (session_id,)).fetchone()
    return _row_to_session(row) if row else None


def get_sessions(conn: sqlite3.Connection, session_ids: Iterable[str]) -> dict:
    """Fetch sessions by id, keyed by id."""
    ids = list(dict.fromkeys(session_ids))
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    rows = conn.execute(
        _SESSION_SELECT + f" WHERE sessions.id IN ({placeholders})",
        ids,
    ).fetchall()
    return {row["id"]: _row_to_session(row) for row in rows}


def list_sessions(conn: sqlite3.Connection, workspace_id: str, limit: int = 50) -> List[Session]:
    rows = conn.execute(
        _SESSION_SELECT + " WHERE sessions.workspace_id = ? ORDER BY sessions.started_at DESC LIMIT ?",
        (workspace_id, limit),
    ).fetchall()
    return [_row_to_session(row) for row in rows]


def replace_events(conn: sqlite3.Connection, session_id: str, events: List[Event]) -> int:
    """Replace a session's stored events with a fresh parse."""
    conn.execute("DELETE FROM events WHERE session_id = ?", (session_id,))
    conn.executemany(
        """
        INSERT INTO events (session_id, type, timestamp, content, tool_name, tool_input, tool_output)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                session_id,
                event.type,
                event.timestamp,
                event.content,
                event.tool_name,
                json.dumps(event.tool_input) if event.tool_input is not None else None,
                event.tool_output,
            )
            for event in events
        ],
    )
    return len(events)


def _artifact_hash(workspace_root: str, artifact: Artifact) -> Optional[str]:
    from .utils import hash_file

    if artifact.content_hash:
        return artifact.content_hash
    if artifact.change_type in ("read", "delete") or not artifact.path:
        return None
    full_path = os.path.join(workspace_root, artifact.path)
    if not os.path.isfile(full_path):
        return None
    return hash_file(full_path)


def record_artifacts(
    conn: sqlite3.Connection,
    session_id: str,
    workspace_root: str,
    artifacts: List[Artifact],
) -> int:
    """Insert artifacts missing for the session and refresh content hashes."""
    inserted = 0
    for artifact in artifacts:
        content_hash = _artifact_hash(workspace_root, artifact)
        existing = conn.execute(
            """
            SELECT id FROM artifacts
            WHERE session_id = ? AND COALESCE(path, '') = COALESCE(?, '') AND change_type = ?
            """,
            (session_id, artifact.path, artifact.change_type),
        ).fetchone()
        if existing:
            if content_hash:
                conn.execute(
                    "UPDATE artifacts SET content_hash = ?, author = ? WHERE id = ?",
                    (content_hash, artifact.author, existing["id"]),
                )
            continue
        conn.execute(
            """
            INSERT INTO artifacts (session_id, type, path, uri, change_type, author, size_bytes, content_hash, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                artifact.type,
                artifact.path,
                artifact.uri,
                artifact.change_type,
                artifact.author,
                artifact.size_bytes,
                content_hash,
                json.dumps(artifact.metadata) if artifact.metadata else None,
            ),
        )
        inserted += 1
    return inserted


def record_parsed_session(conn: sqlite3.Connection, parsed: ParsedSession) -> dict:
    """Persist a parsed session with its events and artifacts in one transaction."""
    from .database import transaction

    session = parsed.session
    with transaction(conn):
        upsert_workspace(conn, session.workspace)
        upsert_session(conn, session)
        events = replace_events(conn, session.id, parsed.events)
        artifacts = record_artifacts(conn, session.id, session.workspace.path, parsed.artifacts)
    return {"session_id": session.id, "events": events, "artifacts": artifacts}


def list_artifacts(conn: sqlite3.Connection, session_id: str) -> List[Artifact]:
    from .models import Artifact

    rows = conn.execute(
        "SELECT * FROM artifacts WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [
        Artifact(
            path=row["path"],
            change_type=row["change_type"],
            author=row["author"],
            type=row["type"],
            uri=row["uri"],
            size_bytes=row["size_bytes"],
            content_hash=row["content_hash"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )
        for row in rows
    ]


def get_artifact_hash(conn: sqlite3.Connection, session_id: str, path: str) -> Optional[str]:
    """Content hash recorded for a path within a session, if any."""
    row = conn.execute(
        """
        SELECT content_hash FROM artifacts
        WHERE session_id = ? AND path = ? AND content_hash IS NOT NULL
        ORDER BY id DESC LIMIT 1
        """,
        (session_id, path),
    ).fetchone()
    return row["content_hash"] if row else None


def insert_decision(
    conn: sqlite3.Connection,
    session_id: str,
    description: str,
    reasoning: Optional[str] = None,
    alternatives: Optional[List[str]] = None,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO decisions (session_id, description, reasoning, alternatives)
        VALUES (?, ?, ?, ?)
        """,
        (session_id, description, reasoning, json.dumps(alternatives) if alternatives else None),
    )
    return int(cursor.lastrowid)


def list_decisions(conn: sqlite3.Connection, session_id: str) -> List[Decision]:
    from .models import Decision

    rows = conn.execute(
        "SELECT * FROM decisions WHERE session_id = ? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [
        Decision(
            id=row["id"],
            session_id=row["session_id"],
            description=row["description"],
            reasoning=row["reasoning"],
            alternatives=json.loads(row["alternatives"]) if row["alternatives"] else None,
        )
        for row in rows
    ]
