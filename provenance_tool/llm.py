"""LLM-assisted nugget extraction through an external text-generation command."""
from __future__ import annotations

import json
import os
import re
import shlex
import subprocess
import tempfile
from typing import TYPE_CHECKING, Callable, List, Optional

from loguru import logger

from .models import MAX_DETAIL_CHARS, MAX_SUMMARY_CHARS, NUGGET_TYPES, Nugget, clamp_confidence
from .utils import DEFAULT_LLM_COMMAND, DEFAULT_LLM_MODEL, DEFAULT_LLM_TIMEOUT_MS, estimate_tokens, utc_now

if TYPE_CHECKING:
    from .models import ParsedSession

GenerateFn = Callable[..., Optional[str]]

DEFAULT_CONFIDENCE = 0.7
MAX_LISTED_FILES = 30
_GIT_ENV_VARS = ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE")

EXTRACTION_SYSTEM = """You are a context extraction engine for a code provenance system. Your job is to extract structured "context nuggets" from AI coding session transcripts.

Each nugget captures a single piece of provenance: WHY code is the way it is.

## Nugget Types

- **intent**: What the user or agent was trying to accomplish
- **decision**: A deliberate choice between alternatives (e.g., "chose Redis over Memcached")
- **constraint**: A requirement or limitation that shaped the code (e.g., "must support Python 3.9+")
- **rejection**: Something that was explicitly considered and rejected
- **tuning**: A case where the human edited AI-generated output
- **dependency**: A dependency added or removed and why
- **workaround**: A hack or temporary fix for an underlying issue
- **caveat**: An important warning about the code's behavior or limitations

## Output Format

Return a JSON array of nugget objects. Each object has:
- type: one of the types above
- summary: a concise 1-sentence summary (max 120 chars)
- detail: optional longer explanation (1-3 sentences)
- scope_path: optional file path this nugget applies to
- scope_symbol: optional function/class/variable name
- confidence: 0.0-1.0 how confident you are this is accurate
- alternatives: optional array of alternatives that were considered (for decisions/rejections)

Output ONLY the JSON array. No explanation, no markdown fences."""


def generate_text(
    prompt: str,
    model: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    command: Optional[str] = None,
) -> Optional[str]:
    """Run the text-generation command with the prompt on stdin.

    Returns None when the command is missing, fails, times out or prints
    nothing usable.
    """
    try:
        cmd_parts = shlex.split(command or DEFAULT_LLM_COMMAND)
    except ValueError:
        return None
    if not cmd_parts:
        return None
    cmd_parts += ["--model", model or DEFAULT_LLM_MODEL]
    timeout = (timeout_ms or DEFAULT_LLM_TIMEOUT_MS) / 1000.0

    env = {key: value for key, value in os.environ.items() if key not in _GIT_ENV_VARS}
    logger.debug(f"Running {cmd_parts[0]} with model={model or DEFAULT_LLM_MODEL}, timeout={timeout}s")
    try:
        proc = subprocess.run(
            cmd_parts,
            input=prompt.encode("utf-8"),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=tempfile.gettempdir(),
            env=env,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"Text generation timed out after {timeout}s")
        return None
    except OSError as exc:
        logger.warning(f"Text generation unavailable: {exc}")
        return None
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace")[:200]
        logger.warning(f"Text generation exited with code {proc.returncode}: {stderr}")
        return None

    stdout = proc.stdout.decode("utf-8", errors="replace").strip()
    if not stdout:
        return None
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError:
        return stdout
    if isinstance(payload, dict):
        result = payload.get("result")
        return result if isinstance(result, str) and result else None
    return stdout


def build_extraction_prompt(
    condensed_session: str,
    session_id: str,
    agent: str,
    started_at: str,
    artifact_paths: Optional[List[str]] = None,
) -> str:
    sections = [
        EXTRACTION_SYSTEM,
        f"## Session Metadata\n- Session ID: {session_id}\n- Agent: {agent}\n- Started: {started_at}",
    ]
    if artifact_paths:
        files = "\n".join(artifact_paths[:MAX_LISTED_FILES])
        if len(artifact_paths) > MAX_LISTED_FILES:
            files += f"\n...and {len(artifact_paths) - MAX_LISTED_FILES} more files"
        sections.append(f"## Files Modified\n{files}")
    sections.append(f"## Session Transcript\n{condensed_session}")
    return "\n\n".join(sections)


def parse_nuggets_json(text: str) -> list:
    """Parse a JSON array, tolerating a markdown code fence around it."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*\n?", "", cleaned)
        cleaned = re.sub(r"\n?```\s*$", "", cleaned)
    parsed = json.loads(cleaned)
    if not isinstance(parsed, list):
        raise ValueError("Expected JSON array")
    return parsed


def validate_nugget(raw: object, session_id: str) -> Optional[Nugget]:
    """Turn one raw model entry into a draft, or None if it is malformed."""
    if not isinstance(raw, dict):
        return None
    nugget_type = raw.get("type")
    if nugget_type not in NUGGET_TYPES:
        return None
    summary = raw.get("summary")
    if not isinstance(summary, str):
        return None
    summary = summary[:MAX_SUMMARY_CHARS]
    if len(summary) < 3:
        return None

    detail = raw.get("detail")
    detail = detail[:MAX_DETAIL_CHARS] if isinstance(detail, str) else None
    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE

    metadata = None
    alternatives = raw.get("alternatives")
    if isinstance(alternatives, list) and alternatives:
        metadata = {"alternatives": [str(item) for item in alternatives]}

    scope_path = raw.get("scope_path")
    scope_symbol = raw.get("scope_symbol")
    return Nugget(
        session_id=session_id,
        type=nugget_type,
        summary=summary,
        detail=detail,
        scope_path=scope_path if isinstance(scope_path, str) and scope_path else None,
        scope_symbol=scope_symbol if isinstance(scope_symbol, str) and scope_symbol else None,
        confidence=clamp_confidence(confidence),
        token_cost=estimate_tokens(summary + (detail or "")),
        extracted_at=utc_now(),
        metadata=metadata,
    )


def extract_llm_nuggets(
    parsed: ParsedSession,
    model: Optional[str] = None,
    generate: Optional[GenerateFn] = None,
    timeout_ms: Optional[int] = None,
) -> List[Nugget]:
    """Ask the model for nuggets; any failure yields an empty list."""
    from .condense import condense

    session = parsed.session
    prompt = build_extraction_prompt(
        condense(parsed),
        session.id,
        session.agent,
        session.started_at,
        parsed.agent_artifact_paths,
    )
    generate = generate or generate_text
    try:
        result = generate(prompt, model=model, timeout_ms=timeout_ms)
    except Exception as exc:
        logger.warning(f"Text generation raised for session {session.id}: {exc}")
        return []
    if not result:
        logger.debug(f"LLM extraction returned nothing for session {session.id}")
        return []
    try:
        raw_nuggets = parse_nuggets_json(result)
    except ValueError as exc:
        logger.debug(f"LLM output for session {session.id} is not a JSON array: {exc}")
        return []

    drafts = [draft for draft in (validate_nugget(raw, session.id) for raw in raw_nuggets) if draft]
    logger.debug(f"LLM extracted {len(drafts)} nuggets from {len(raw_nuggets)} raw entries")
    return drafts
