from __future__ import annotations

import os

from conftest import make_nugget, make_parsed_session
from provenance_tool.extraction import ensure_extracted
from provenance_tool.models import Artifact
from provenance_tool.nuggets import insert_nuggets
from provenance_tool.staleness import check_batch_staleness, check_staleness
from provenance_tool.store import record_parsed_session


def _write(workspace, rel_path: str, content: str) -> str:
    full_path = os.path.join(workspace.path, rel_path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, "w", encoding="utf-8") as f:
        f.write(content)
    return full_path


def test_changed_file_is_flagged(conn, workspace) -> None:
    _write(workspace, "src/auth.ts", "v1")
    parsed = make_parsed_session(
        workspace,
        prompts=["Add auth"],
        artifacts=[Artifact(path="src/auth.ts", change_type="create")],
    )
    nuggets = ensure_extracted(conn, parsed)
    scoped = next(n for n in nuggets if n.scope_path == "src/auth.ts")

    assert check_staleness(conn, scoped, workspace.path).is_stale is False

    _write(workspace, "src/auth.ts", "v2")
    check = check_staleness(conn, scoped, workspace.path)
    assert check.is_stale is True
    assert check.stale_reason == "file_changed"
    assert check.nugget_id == scoped.id


def test_missing_file_is_not_drift(conn, workspace) -> None:
    full_path = _write(workspace, "src/gone.ts", "v1")
    parsed = make_parsed_session(workspace, artifacts=[Artifact(path="src/gone.ts", change_type="modify")])
    nugget = ensure_extracted(conn, parsed)[0]
    os.remove(full_path)

    assert check_staleness(conn, nugget, workspace.path).is_stale is False


def test_past_stale_after_is_expired(conn, workspace) -> None:
    record_parsed_session(conn, make_parsed_session(workspace, "s1"))
    expired, fresh = insert_nuggets(
        conn,
        [
            make_nugget("s1", "workaround", "pin urllib3 until upstream fix", stale_after="2000-01-01T00:00:00Z"),
            make_nugget("s1", "workaround", "retry flaky upload", stale_after="2999-01-01T00:00:00Z"),
        ],
    )

    checks = check_batch_staleness(conn, [expired, fresh], workspace.path)

    assert checks[expired.id].stale_reason == "expired"
    assert checks[fresh.id].is_stale is False


def test_newer_session_supersedes_same_scope_and_type(conn, workspace) -> None:
    record_parsed_session(conn, make_parsed_session(workspace, "s1"))
    record_parsed_session(conn, make_parsed_session(workspace, "s2", started_at="2024-04-01T10:00:00Z"))
    (old,) = insert_nuggets(conn, [make_nugget("s1", "decision", "use HS256", "src/auth.ts")])
    same_session, other_type = insert_nuggets(
        conn,
        [
            make_nugget("s1", "decision", "use HS512", "src/auth.ts"),
            make_nugget("s2", "caveat", "clock skew matters", "src/auth.ts"),
        ],
    )
    (newer,) = insert_nuggets(conn, [make_nugget("s2", "decision", "use RS256", "src/auth.ts")])

    check = check_staleness(conn, old, workspace.path)

    assert check.is_stale is True
    assert check.stale_reason == "superseded"
    assert check.superseded_by == newer.id
    assert check_staleness(conn, same_session, workspace.path).superseded_by == newer.id
    assert check_staleness(conn, newer, workspace.path).is_stale is False
    assert check_staleness(conn, other_type, workspace.path).is_stale is False


def test_drift_takes_precedence_over_expiry(conn, workspace) -> None:
    _write(workspace, "app.py", "x = 1")
    parsed = make_parsed_session(workspace, artifacts=[Artifact(path="app.py", change_type="create")])
    record_parsed_session(conn, parsed)
    (nugget,) = insert_nuggets(
        conn,
        [make_nugget("sess-1", "caveat", "x must stay 1", "app.py", stale_after="2000-01-01T00:00:00Z")],
    )
    _write(workspace, "app.py", "x = 2")

    assert check_staleness(conn, nugget, workspace.path).stale_reason == "file_changed"


def test_scope_outside_workspace_is_ignored(conn, workspace) -> None:
    record_parsed_session(conn, make_parsed_session(workspace, "s1"))
    (nugget,) = insert_nuggets(conn, [make_nugget("s1", "caveat", "do not touch", "../outside.py")])

    assert check_staleness(conn, nugget, workspace.path).is_stale is False
