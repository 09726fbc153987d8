from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from conftest import assistant_line, tool_use, transcript_path, user_line, write_transcript
from provenance_tool import cli


@pytest.fixture
def run(tmp_path: Path, workspace, projects_dir: Path, capsys):
    db_path = str(tmp_path / "cli.db")

    def _run(*args: str) -> dict:
        cli.main([
            "--db", db_path,
            "--workspace", workspace.path,
            "--projects-dir", str(projects_dir),
            "--log-level", "ERROR",
            *args,
        ])
        return json.loads(capsys.readouterr().out)

    return _run


def _record_session(workspace, projects_dir: Path) -> None:
    write_transcript(
        transcript_path(projects_dir, workspace, "sess-1"),
        [
            user_line("Please add JWT auth to src/auth.ts", "2024-03-01T10:00:00Z"),
            assistant_line(
                [tool_use("Write", {"file_path": f"{workspace.path}/src/auth.ts", "content": "x"}, "t1")],
                "2024-03-01T10:01:00Z",
            ),
        ],
    )


def test_init_writes_config_once(run, workspace) -> None:
    first = run("init")
    assert first["ok"] is True
    assert first["workspace_id"] == workspace.id
    assert first["config_created"] is True
    assert os.path.exists(first["config"])

    assert run("init")["config_created"] is False


def test_extract_then_query(run, workspace, projects_dir: Path) -> None:
    _record_session(workspace, projects_dir)

    sessions = run("sessions")["sessions"]
    assert [(s["id"], s["extracted"]) for s in sessions] == [("sess-1", False)]

    dry = run("extract", "--dry-run")
    assert dry["extracted"] == 1
    assert run("sessions")["sessions"][0]["extracted"] is False

    result = run("extract", "--latest")
    assert result["extracted"] == 1
    assert run("extract")["skipped"] == 1

    context = run("context", "--path", "src/auth.ts", "--budget", "500")
    summaries = [n["summary"] for n in context["nuggets"]]
    assert "created src/auth.ts" in summaries
    assert context["budget"]["requested"] == 500
    assert context["query"]["path"] == "src/auth.ts"

    listed = run("nuggets", "--session", "sess-1")["nuggets"]
    assert listed and all(n["session_id"] == "sess-1" for n in listed)

    coverage = run("coverage")
    assert coverage["coverage"]["total"] == len(listed)


def test_context_on_empty_workspace_hints_extraction(run) -> None:
    response = run("context")
    assert response["nuggets"] == []
    assert response["more_context_hint"].startswith("No context recorded")


def test_bad_type_reports_error(run, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run("context", "--types", "intent,opinion")
    assert excinfo.value.code == 1
    output = json.loads(capsys.readouterr().out)
    assert output["ok"] is False
    assert "opinion" in output["error"]


def test_unknown_session_reports_error(run, workspace, projects_dir: Path, capsys) -> None:
    _record_session(workspace, projects_dir)
    with pytest.raises(SystemExit):
        run("extract", "--session", "nope")
    assert json.loads(capsys.readouterr().out)["error"] == "Session not found: nope"


def test_export_and_import(run, workspace, projects_dir: Path) -> None:
    _record_session(workspace, projects_dir)
    run("extract")

    exported = run("export")["exported"]
    assert exported["sessions"] == 1
    assert exported["events"] == 0

    imported = run("import")["imported"]
    assert imported["sessions"] == {"inserted": 0, "skipped": 1, "errored": 0}


def test_extract_accepts_timeout() -> None:
    args = cli.parse_args(["extract", "--llm", "--timeout-ms", "5000"])
    assert args.timeout_ms == 5000
    assert cli.parse_args(["extract"]).timeout_ms is None
