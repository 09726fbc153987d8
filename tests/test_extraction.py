from __future__ import annotations

import json
import os
import threading

from conftest import make_parsed_session
from provenance_tool.extraction import ensure_extracted, extract_batch
from provenance_tool.fts import count_index_rows
from provenance_tool.models import Artifact
from provenance_tool.nuggets import delete_nuggets_for_session, get_nuggets_by_session, has_nuggets
from provenance_tool.store import get_artifact_hash, get_session, list_decisions
from provenance_tool.utils import hash_file


def _parsed(workspace, session_id="sess-1", **kwargs):
    kwargs.setdefault("prompts", ["Please add JWT auth to src/auth.ts"])
    kwargs.setdefault("artifacts", [Artifact(path="src/auth.ts", change_type="create")])
    return make_parsed_session(workspace, session_id=session_id, **kwargs)


def _indexed_nugget_ids(conn, session_id):
    rows = conn.execute("SELECT rowid FROM nuggets_fts WHERE session_id = ? ORDER BY rowid", (session_id,))
    return [row[0] for row in rows.fetchall()]


def test_extraction_is_idempotent(conn, workspace) -> None:
    parsed = _parsed(workspace)

    first = ensure_extracted(conn, parsed)
    second = ensure_extracted(conn, parsed)

    assert first
    assert [n.id for n in second] == [n.id for n in first]
    assert get_session(conn, "sess-1").workspace.id == workspace.id
    assert count_index_rows(conn, "sess-1") == {"sessions": 1, "nuggets": len(first)}


def test_extraction_records_content_hashes(conn, workspace) -> None:
    target = f"{workspace.path}/src/auth.ts"
    os.makedirs(os.path.dirname(target))
    with open(target, "w", encoding="utf-8") as f:
        f.write("export const verify = () => true;\n")

    ensure_extracted(conn, _parsed(workspace))

    assert get_artifact_hash(conn, "sess-1", "src/auth.ts") == hash_file(target)


def test_forced_extraction_leaves_no_residual_index_rows(conn, workspace) -> None:
    parsed = _parsed(workspace)
    first_ids = [n.id for n in ensure_extracted(conn, parsed)]

    rebuilt = ensure_extracted(conn, parsed, force=True)
    rebuilt_ids = [n.id for n in rebuilt]

    assert not set(first_ids) & set(rebuilt_ids)
    assert _indexed_nugget_ids(conn, "sess-1") == rebuilt_ids
    assert count_index_rows(conn, "sess-1")["sessions"] == 1


def test_delete_removes_nuggets_decisions_and_index(conn, workspace) -> None:
    def generate(prompt, **kwargs):
        return json.dumps([{"type": "decision", "summary": "chose RS256 over HS256", "alternatives": ["HS256"]}])

    ensure_extracted(conn, _parsed(workspace), use_llm=True, generate=generate)
    assert [d.description for d in list_decisions(conn, "sess-1")] == ["chose RS256 over HS256"]

    removed = delete_nuggets_for_session(conn, "sess-1")

    assert removed == 1
    assert not has_nuggets(conn, "sess-1")
    assert list_decisions(conn, "sess-1") == []
    assert count_index_rows(conn, "sess-1") == {"sessions": 0, "nuggets": 0}


def test_llm_output_replaces_heuristic_drafts(conn, workspace) -> None:
    def generate(prompt, **kwargs):
        return json.dumps([{"type": "constraint", "summary": "tokens must expire within 1h", "confidence": 0.9}])

    nuggets = ensure_extracted(conn, _parsed(workspace), use_llm=True, generate=generate)

    assert [(n.type, n.summary) for n in nuggets] == [("constraint", "tokens must expire within 1h")]


def test_timeout_reaches_text_generation(conn, workspace) -> None:
    seen = []

    def generate(prompt, **kwargs):
        seen.append(kwargs.get("timeout_ms"))
        return "[]"

    ensure_extracted(conn, _parsed(workspace), use_llm=True, generate=generate, timeout_ms=1500)
    extract_batch(conn, [_parsed(workspace, "sess-2")], use_llm=True, generate=generate, timeout_ms=2500)

    assert seen == [1500, 2500]

def test_empty_llm_output_falls_back_to_heuristics(conn, workspace) -> None:
    nuggets = ensure_extracted(conn, _parsed(workspace), use_llm=True, generate=lambda prompt, **kwargs: None)

    assert ("intent", "created src/auth.ts") in [(n.type, n.summary) for n in nuggets]
    assert all(n.id is not None for n in nuggets)


def test_batch_counts_extracted_skipped_and_failed(conn, workspace) -> None:
    done = _parsed(workspace, "done")
    ensure_extracted(conn, done)
    broken = _parsed(workspace, "broken", started_at=None)
    fresh = _parsed(workspace, "fresh")

    result = extract_batch(conn, [done, broken, fresh])

    assert result == {"extracted": 1, "skipped": 1, "failed": 1, "cancelled": False}
    assert has_nuggets(conn, "fresh")
    assert not has_nuggets(conn, "broken")


def test_batch_dry_run_writes_nothing(conn, workspace) -> None:
    result = extract_batch(conn, [_parsed(workspace, "a"), _parsed(workspace, "b")], dry_run=True)

    assert result["extracted"] == 2
    assert get_session(conn, "a") is None
    assert get_nuggets_by_session(conn, "b") == []


def test_batch_stops_when_cancelled(conn, workspace) -> None:
    cancel = threading.Event()
    calls = []

    def generate(prompt, **kwargs):
        calls.append(prompt)
        cancel.set()
        return None

    sessions = [_parsed(workspace, "one"), _parsed(workspace, "two")]
    result = extract_batch(conn, sessions, use_llm=True, cancel=cancel, generate=generate)

    assert result["cancelled"] is True
    assert result["extracted"] == 1
    assert len(calls) == 1
    assert not has_nuggets(conn, "two")
