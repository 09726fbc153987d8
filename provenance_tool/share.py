"""Export and import of a workspace's store as versioned JSONL interchange files."""
from __future__ import annotations

import json
import os
import sqlite3
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from loguru import logger

from .utils import DATA_SUBDIR, redact_optional

if TYPE_CHECKING:
    from .models import Workspace

RECORD_VERSION = 1
KIND_FILES = {
    "sessions": "sessions.jsonl",
    "nuggets": "nuggets.jsonl",
    "decisions": "decisions.jsonl",
    "artifacts": "artifacts.jsonl",
    "events": "events.jsonl",
}
IMPORT_KINDS = ("sessions", "nuggets", "decisions", "artifacts")


def data_dir(workspace_path: str) -> str:
    return os.path.join(workspace_path, DATA_SUBDIR)


def _session_record(row: sqlite3.Row) -> dict:
    return {
        "_v": RECORD_VERSION,
        "id": row["id"],
        "workspace_id": row["workspace_id"],
        "agent": row["agent"],
        "started_at": row["started_at"],
        "ended_at": row["ended_at"],
        "total_tokens": row["total_tokens"],
        "summary": redact_optional(row["summary"]),
        "raw_path": row["raw_path"],
        "metadata": redact_optional(row["metadata"]),
    }


def _nugget_record(row: sqlite3.Row) -> dict:
    return {
        "_v": RECORD_VERSION,
        "session_id": row["session_id"],
        "type": row["type"],
        "summary": redact_optional(row["summary"]),
        "detail": redact_optional(row["detail"]),
        "scope_path": row["scope_path"],
        "scope_symbol": row["scope_symbol"],
        "confidence": row["confidence"],
        "token_cost": row["token_cost"],
        "extracted_at": row["extracted_at"],
        "stale_after": row["stale_after"],
        "metadata": redact_optional(row["metadata"]),
    }


def _decision_record(row: sqlite3.Row) -> dict:
    return {
        "_v": RECORD_VERSION,
        "session_id": row["session_id"],
        "description": redact_optional(row["description"]),
        "reasoning": redact_optional(row["reasoning"]),
        "alternatives": redact_optional(row["alternatives"]),
    }


def _artifact_record(row: sqlite3.Row) -> dict:
    return {
        "_v": RECORD_VERSION,
        "session_id": row["session_id"],
        "type": row["type"],
        "path": row["path"],
        "uri": row["uri"],
        "change_type": row["change_type"],
        "author": row["author"],
        "size_bytes": row["size_bytes"],
        "content_hash": row["content_hash"],
        "metadata": redact_optional(row["metadata"]),
    }


def _event_record(row: sqlite3.Row) -> dict:
    return {
        "_v": RECORD_VERSION,
        "session_id": row["session_id"],
        "type": row["type"],
        "timestamp": row["timestamp"],
        "content": redact_optional(row["content"]),
        "tool_name": row["tool_name"],
        "tool_input": redact_optional(row["tool_input"]),
        "tool_output": redact_optional(row["tool_output"]),
    }


EXPORT_QUERIES: Dict[str, str] = {
    "sessions": """
        SELECT * FROM sessions WHERE workspace_id = ?
        ORDER BY started_at, id
    """,
    "nuggets": """
        SELECT context_nuggets.* FROM context_nuggets
        JOIN sessions ON sessions.id = context_nuggets.session_id
        WHERE sessions.workspace_id = ?
        ORDER BY context_nuggets.extracted_at, context_nuggets.id
    """,
    "decisions": """
        SELECT decisions.* FROM decisions
        JOIN sessions ON sessions.id = decisions.session_id
        WHERE sessions.workspace_id = ?
        ORDER BY sessions.started_at, decisions.id
    """,
    "artifacts": """
        SELECT artifacts.* FROM artifacts
        JOIN sessions ON sessions.id = artifacts.session_id
        WHERE sessions.workspace_id = ?
        ORDER BY sessions.started_at, artifacts.id
    """,
    "events": """
        SELECT events.* FROM events
        JOIN sessions ON sessions.id = events.session_id
        WHERE sessions.workspace_id = ?
        ORDER BY events.timestamp, events.id
    """,
}
RECORD_MAPPERS: Dict[str, Callable[[sqlite3.Row], dict]] = {
    "sessions": _session_record,
    "nuggets": _nugget_record,
    "decisions": _decision_record,
    "artifacts": _artifact_record,
    "events": _event_record,
}


def write_jsonl_atomic(path: str, records: List[dict]) -> None:
    """Write records as JSON lines via a temp file and rename."""
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
        for record in records:
            f.write(json.dumps(record, ensure_ascii=False))
            f.write("\n")
    os.replace(tmp_path, path)


def export_workspace(
    conn: sqlite3.Connection,
    workspace_id: str,
    workspace_path: str,
    export_config: Optional[Dict[str, bool]] = None,
) -> dict:
    """Export enabled record kinds to ``<workspace>/.provenance/data``."""
    from .config import DEFAULT_CONFIG

    enabled = dict(DEFAULT_CONFIG["export"])
    if export_config:
        enabled.update(export_config)

    out_dir = data_dir(workspace_path)
    os.makedirs(out_dir, exist_ok=True)
    summary = {kind: 0 for kind in KIND_FILES}
    for kind, filename in KIND_FILES.items():
        if not enabled.get(kind):
            continue
        rows = conn.execute(EXPORT_QUERIES[kind], (workspace_id,)).fetchall()
        records = [RECORD_MAPPERS[kind](row) for row in rows]
        write_jsonl_atomic(os.path.join(out_dir, filename), records)
        summary[kind] = len(records)

    logger.info(
        "Exported " + ", ".join(f"{count} {kind}" for kind, count in summary.items()) + f" to {out_dir}"
    )
    return summary


def read_jsonl(path: str) -> List[Optional[dict]]:
    """Read JSON lines; a missing file yields no records, a bad line yields None."""
    if not os.path.exists(path):
        return []
    records: List[Optional[dict]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                records.append(None)
                continue
            records.append(record if isinstance(record, dict) else None)
    return records


def _import_session(conn: sqlite3.Connection, rec: dict, workspace_id: str) -> bool:
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO sessions (id, workspace_id, agent, started_at, ended_at, total_tokens,
                                        summary, raw_path, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            rec["id"],
            workspace_id,
            rec["agent"],
            rec["started_at"],
            rec.get("ended_at"),
            rec.get("total_tokens"),
            rec.get("summary"),
            rec.get("raw_path"),
            rec.get("metadata"),
        ),
    )
    return cursor.rowcount > 0


def _import_nugget(conn: sqlite3.Connection, rec: dict, workspace_id: str) -> bool:
    from .models import MAX_SUMMARY_CHARS, NUGGET_TYPES, Nugget
    from .nuggets import write_nugget

    if rec["type"] not in NUGGET_TYPES:
        raise ValueError(f"Unknown nugget type {rec['type']!r}")
    summary = rec["summary"][:MAX_SUMMARY_CHARS]
    existing = conn.execute(
        """
        SELECT id FROM context_nuggets
        WHERE session_id = ? AND type = ? AND COALESCE(scope_path, '') = ? AND summary = ?
        """,
        (rec["session_id"], rec["type"], rec.get("scope_path") or "", summary),
    ).fetchone()
    if existing:
        return False
    metadata = rec.get("metadata")
    nugget = Nugget(
        session_id=rec["session_id"],
        type=rec["type"],
        summary=summary,
        detail=rec.get("detail"),
        scope_path=rec.get("scope_path"),
        scope_symbol=rec.get("scope_symbol"),
        confidence=rec.get("confidence", 1.0),
        token_cost=rec.get("token_cost"),
        extracted_at=rec["extracted_at"],
        stale_after=rec.get("stale_after"),
        metadata=json.loads(metadata) if metadata else None,
    )
    write_nugget(conn, nugget, record_decision=False)
    return True


def _import_decision(conn: sqlite3.Connection, rec: dict, workspace_id: str) -> bool:
    existing = conn.execute(
        "SELECT id FROM decisions WHERE session_id = ? AND description = ?",
        (rec["session_id"], rec["description"]),
    ).fetchone()
    if existing:
        return False
    conn.execute(
        "INSERT INTO decisions (session_id, description, reasoning, alternatives) VALUES (?, ?, ?, ?)",
        (rec["session_id"], rec["description"], rec.get("reasoning"), rec.get("alternatives")),
    )
    return True


def _import_artifact(conn: sqlite3.Connection, rec: dict, workspace_id: str) -> bool:
    existing = conn.execute(
        """
        SELECT id FROM artifacts
        WHERE session_id = ? AND COALESCE(path, '') = ? AND change_type = ?
        """,
        (rec["session_id"], rec.get("path") or "", rec["change_type"]),
    ).fetchone()
    if existing:
        return False
    conn.execute(
        """
        INSERT INTO artifacts (session_id, type, path, uri, change_type, author, size_bytes, content_hash, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            rec["session_id"],
            rec.get("type") or "file",
            rec.get("path"),
            rec.get("uri"),
            rec["change_type"],
            rec.get("author") or "agent",
            rec.get("size_bytes"),
            rec.get("content_hash"),
            rec.get("metadata"),
        ),
    )
    return True


RECORD_IMPORTERS: Dict[str, Callable[[sqlite3.Connection, dict, str], bool]] = {
    "sessions": _import_session,
    "nuggets": _import_nugget,
    "decisions": _import_decision,
    "artifacts": _import_artifact,
}


def _import_kind(conn: sqlite3.Connection, kind: str, records: List[Optional[dict]], workspace_id: str) -> dict:
    from .database import transaction

    counts = {"inserted": 0, "skipped": 0, "errored": 0}
    importer = RECORD_IMPORTERS[kind]
    with transaction(conn):
        for rec in records:
            if rec is None or rec.get("_v") != RECORD_VERSION:
                counts["errored"] += 1
                continue
            try:
                inserted = importer(conn, rec, workspace_id)
            except (KeyError, TypeError, ValueError, sqlite3.IntegrityError) as exc:
                logger.debug(f"Rejected {kind} record: {exc}")
                counts["errored"] += 1
                continue
            counts["inserted" if inserted else "skipped"] += 1
    return counts


def import_workspace(conn: sqlite3.Connection, workspace: Workspace) -> dict:
    """Import interchange files from the workspace's data directory.

    Sessions are attached to the importing workspace and go in first so the
    other kinds can reference them. Each kind commits in its own transaction.
    """
    from .store import upsert_workspace

    in_dir = data_dir(workspace.path)
    upsert_workspace(conn, workspace)
    conn.commit()

    summary = {}
    for kind in IMPORT_KINDS:
        records = read_jsonl(os.path.join(in_dir, KIND_FILES[kind]))
        summary[kind] = _import_kind(conn, kind, records, workspace.id)

    logger.info(
        "Imported "
        + ", ".join(f"{counts['inserted']} {kind} ({counts['skipped']} skipped)" for kind, counts in summary.items())
    )
    return summary
