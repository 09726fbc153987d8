"""Pytest configuration, fixtures and transcript builders."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest
from pytest_bdd import given, parsers

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from provenance_tool.database import init_db
from provenance_tool.models import Artifact, Event, Nugget, ParsedSession, Session, Workspace
from provenance_tool.utils import get_project_dir, utc_now, workspace_from_path


class BDDTestContext:
    """Holds test state across steps."""

    def __init__(self):
        self.db_path: Path | None = None
        self.conn = None
        self.workspace: Workspace | None = None
        self.projects_dir: Path | None = None
        self.parsed: dict[str, ParsedSession] = {}
        self.nuggets: dict[str, list] = {}
        self.nugget_ids: dict[str, int] = {}
        self.first_ids: list[int] = []
        self.batch_result: dict | None = None
        self.response = None
        self.export_summary: dict | None = None
        self.import_summary: dict | None = None
        self.target_conn = None


@pytest.fixture
def conn(tmp_path: Path):
    """A fresh store with schema and full-text tables."""
    connection = init_db(str(tmp_path / "store.db"))
    yield connection
    connection.close()


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    root = tmp_path / "project"
    root.mkdir()
    return workspace_from_path(str(root))


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    path = tmp_path / "claude-projects"
    path.mkdir()
    return path


@pytest.fixture
def test_context(tmp_path: Path):
    """Create a fresh test context with a temporary store and workspace."""
    ctx = BDDTestContext()
    ctx.db_path = tmp_path / "store.db"
    ctx.conn = init_db(str(ctx.db_path))
    root = tmp_path / "project"
    root.mkdir()
    ctx.workspace = workspace_from_path(str(root))
    ctx.projects_dir = tmp_path / "claude-projects"
    ctx.projects_dir.mkdir()

    yield ctx

    if ctx.conn:
        ctx.conn.close()
    if ctx.target_conn:
        ctx.target_conn.close()


def parse_datatable(datatable: list[list[str]]) -> list[dict[str, str]]:
    """Convert a pytest-bdd 8.x datatable (list of lists) to a list of row dicts."""
    if not datatable:
        return []
    headers = datatable[0]
    return [dict(zip(headers, row)) for row in datatable[1:]]


# Transcript builders
def user_line(text: Any, timestamp: str, session_id: str = "sess-1", **extra: Any) -> dict:
    record = {
        "type": "user",
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": {"role": "user", "content": text},
    }
    record.update(extra)
    return record


def assistant_line(blocks: list, timestamp: str, session_id: str = "sess-1", usage: dict | None = None) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": blocks}
    if usage:
        message["usage"] = usage
    return {
        "type": "assistant",
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": message,
    }


def tool_use(name: str, tool_input: dict, tool_id: str) -> dict:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}


def tool_result(tool_id: str, content: Any) -> dict:
    return {"type": "tool_result", "tool_use_id": tool_id, "content": content}


def write_transcript(path: Path, records: list) -> Path:
    """Write records as JSONL; plain strings are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record if isinstance(record, str) else json.dumps(record, separators=(",", ":")))
            f.write("\n")
    return path


def transcript_path(projects_dir: Path, workspace: Workspace, session_id: str) -> Path:
    return Path(get_project_dir(workspace.path, str(projects_dir))) / f"{session_id}.jsonl"


def make_parsed_session(
    workspace: Workspace,
    session_id: str = "sess-1",
    prompts: list[str] | None = None,
    artifacts: list[Artifact] | None = None,
    events: list[Event] | None = None,
    started_at: str = "2024-03-01T10:00:00Z",
) -> ParsedSession:
    """Build a parsed session directly, without a transcript file."""
    prompts = prompts or []
    artifacts = artifacts or []
    if events is None:
        events = [Event(type="user_prompt", timestamp=started_at, content=p) for p in prompts]
    return ParsedSession(
        session=Session(
            id=session_id,
            workspace=workspace,
            agent="claude-code",
            started_at=started_at,
            ended_at=started_at,
            total_tokens=0,
        ),
        events=events,
        artifacts=artifacts,
        user_prompts=prompts,
        agent_artifact_paths=[a.path for a in artifacts if a.path and a.change_type != "read"],
    )


def make_nugget(session_id: str, type_: str, summary: str, scope_path: str | None = None, **kwargs: Any) -> Nugget:
    kwargs.setdefault("confidence", 0.8)
    kwargs.setdefault("extracted_at", utc_now())
    return Nugget(session_id=session_id, type=type_, summary=summary, scope_path=scope_path, **kwargs)


# Shared steps


@given("a fresh provenance store")
def given_fresh_store(test_context: BDDTestContext):
    """Store is already created by fixture."""
    pass


@given(parsers.parse('a recorded session "{session_id}" with nuggets:'))
def given_recorded_session(test_context: BDDTestContext, session_id: str, datatable):
    """Record a session and store the tabled nuggets for it."""
    from provenance_tool.nuggets import insert_nuggets
    from provenance_tool.store import record_parsed_session

    record_parsed_session(test_context.conn, make_parsed_session(test_context.workspace, session_id))
    drafts = [
        make_nugget(
            session_id,
            row["type"],
            row["summary"],
            row.get("scope_path") or None,
            detail=row.get("detail") or None,
        )
        for row in parse_datatable(datatable)
    ]
    for nugget in insert_nuggets(test_context.conn, drafts):
        test_context.nugget_ids[nugget.summary] = nugget.id
