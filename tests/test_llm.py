from __future__ import annotations

import json
import shlex
import sys

import pytest

from conftest import make_parsed_session
from provenance_tool.llm import (
    build_extraction_prompt,
    extract_llm_nuggets,
    generate_text,
    parse_nuggets_json,
    validate_nugget,
)
from provenance_tool.models import Artifact


def test_parse_nuggets_json_strips_fences() -> None:
    fenced = '```json\n[{"type": "intent", "summary": "add auth"}]\n```'
    assert parse_nuggets_json(fenced) == [{"type": "intent", "summary": "add auth"}]
    assert parse_nuggets_json("  []  ") == []


def test_parse_nuggets_json_rejects_non_arrays() -> None:
    with pytest.raises(ValueError):
        parse_nuggets_json('{"type": "intent"}')
    with pytest.raises(ValueError):
        parse_nuggets_json("not json at all")


def test_validate_nugget_rules() -> None:
    assert validate_nugget("text", "s") is None
    assert validate_nugget({"type": "opinion", "summary": "nope"}, "s") is None
    assert validate_nugget({"type": "intent", "summary": "ab"}, "s") is None
    assert validate_nugget({"type": "intent", "summary": 42}, "s") is None

    draft = validate_nugget(
        {
            "type": "decision",
            "summary": "s" * 300,
            "detail": "d" * 900,
            "confidence": 7,
            "scope_path": "src/cache.py",
            "alternatives": ["Memcached", "in-process LRU"],
        },
        "sess-9",
    )
    assert draft.session_id == "sess-9"
    assert len(draft.summary) == 200
    assert len(draft.detail) == 500
    assert draft.confidence == 1.0
    assert draft.scope_path == "src/cache.py"
    assert draft.alternatives == ["Memcached", "in-process LRU"]


def test_validate_nugget_defaults_confidence() -> None:
    assert validate_nugget({"type": "caveat", "summary": "slow on NFS"}, "s").confidence == 0.7
    assert validate_nugget({"type": "caveat", "summary": "slow on NFS", "confidence": True}, "s").confidence == 0.7
    assert validate_nugget({"type": "caveat", "summary": "slow on NFS", "confidence": -2}, "s").confidence == 0.0


def test_build_prompt_caps_file_list() -> None:
    paths = [f"src/file{i}.py" for i in range(35)]
    prompt = build_extraction_prompt("digest", "sess-1", "claude-code", "2024-03-01T10:00:00Z", paths)
    assert "src/file29.py" in prompt
    assert "src/file30.py" not in prompt
    assert "...and 5 more files" in prompt
    assert prompt.endswith("## Session Transcript\ndigest")


def test_extract_with_injected_generator(workspace) -> None:
    parsed = make_parsed_session(
        workspace,
        prompts=["Use Redis for caching"],
        artifacts=[Artifact(path="src/cache.py", change_type="create")],
    )
    seen = {}

    def fake_generate(prompt, model=None, timeout_ms=None):
        seen["prompt"] = prompt
        seen["model"] = model
        return json.dumps(
            [
                {"type": "decision", "summary": "chose Redis over Memcached", "confidence": 0.9},
                {"type": "bogus", "summary": "dropped"},
            ]
        )

    drafts = extract_llm_nuggets(parsed, model="haiku", generate=fake_generate)

    assert [(d.type, d.summary) for d in drafts] == [("decision", "chose Redis over Memcached")]
    assert seen["model"] == "haiku"
    assert "src/cache.py" in seen["prompt"]
    assert "[User] Use Redis for caching" in seen["prompt"]


@pytest.mark.parametrize(
    "output",
    [None, "", "I could not find anything", '{"nuggets": []}'],
)
def test_unusable_output_yields_no_drafts(workspace, output) -> None:
    parsed = make_parsed_session(workspace, prompts=["Add logging"])
    assert extract_llm_nuggets(parsed, generate=lambda prompt, **kwargs: output) == []


def test_generator_exception_yields_no_drafts(workspace) -> None:
    def broken(prompt, **kwargs):
        raise RuntimeError("network down")

    assert extract_llm_nuggets(make_parsed_session(workspace, prompts=["Add logging"]), generate=broken) == []


def test_generate_text_missing_command() -> None:
    assert generate_text("hello", command="provenance-no-such-binary-xyz") is None


def test_generate_text_unwraps_result_envelope() -> None:
    script = 'import json, sys; sys.stdin.read(); print(json.dumps({"result": "[]"}))'
    command = f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"
    assert generate_text("hello", command=command, timeout_ms=30000) == "[]"


def test_generate_text_returns_raw_stdout() -> None:
    script = "import sys; print(sys.stdin.read().upper())"
    command = f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"
    assert generate_text("hello", command=command, timeout_ms=30000) == "HELLO"


def test_generate_text_nonzero_exit() -> None:
    command = f"{shlex.quote(sys.executable)} -c {shlex.quote('import sys; sys.exit(3)')}"
    assert generate_text("hello", command=command, timeout_ms=30000) is None
