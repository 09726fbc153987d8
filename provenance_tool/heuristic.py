"""Rule-based nugget extraction that needs no model."""
from __future__ import annotations

import re
from typing import TYPE_CHECKING, List

from .models import Nugget
from .utils import estimate_tokens, utc_now

if TYPE_CHECKING:
    from .models import ParsedSession

PROMPT_PREFIX_PATTERN = re.compile(
    r"^(please\s+|can\s+you\s+|could\s+you\s+|i\s+want\s+to\s+|i\s+need\s+to\s+|let'?s\s+)",
    re.IGNORECASE,
)
FILE_MENTION_PATTERN = re.compile(
    r"(?:^|\s)((?:\./|\.\./|src/|test/|lib/)?[\w./-]+\."
    r"(?:ts|js|tsx|jsx|mjs|cjs|json|md|css|scss|html|vue|svelte|py|pyi|rs|go|java|kt|rb|php"
    r"|c|h|cpp|hpp|cs|swift|sh|yaml|yml|toml|ini|cfg|sql))"
    r"(?![\w/-])"
)

CHANGE_VERBS = {"create": "created", "modify": "modified", "delete": "deleted"}


def clean_prompt_to_intent(prompt: str) -> str:
    """First line of a prompt, minus conversational filler, as a lower-case clause."""
    lines = prompt.strip().split("\n")
    subject = PROMPT_PREFIX_PATTERN.sub("", lines[0], count=1)
    subject = subject[:1].lower() + subject[1:]
    subject = re.sub(r"[.!?]+$", "", subject)
    if len(subject) > 120:
        subject = subject[:117] + "..."
    return subject


def extract_file_mentions(text: str) -> List[str]:
    mentions: List[str] = []
    for match in FILE_MENTION_PATTERN.finditer(text):
        path = match.group(1)
        if path.startswith("./"):
            path = path[2:]
        if path not in mentions:
            mentions.append(path)
    return mentions


def extract_heuristic_nuggets(parsed: ParsedSession) -> List[Nugget]:
    """Derive nugget drafts from prompts and file activity. Never raises."""
    drafts: List[Nugget] = []
    now = utc_now()
    session_id = parsed.session.id

    def _draft(type_: str, summary: str, confidence: float, **kwargs) -> Nugget:
        return Nugget(
            session_id=session_id,
            type=type_,
            summary=summary,
            confidence=confidence,
            extracted_at=now,
            token_cost=estimate_tokens(summary),
            **kwargs,
        )

    if parsed.user_prompts:
        first_prompt = parsed.user_prompts[0]
        intent = clean_prompt_to_intent(first_prompt)
        if len(intent) > 3:
            drafts.append(_draft("intent", intent, 0.6, detail=first_prompt[:200]))

    agent_paths = set(parsed.agent_artifact_paths)
    for prompt in parsed.user_prompts:
        for path in extract_file_mentions(prompt):
            if path in agent_paths:
                drafts.append(_draft("intent", clean_prompt_to_intent(prompt), 0.5, scope_path=path))

    for artifact in parsed.artifacts:
        if artifact.author == "mixed" and artifact.path:
            drafts.append(
                _draft("tuning", f"human-edited AI output in {artifact.path}", 0.65, scope_path=artifact.path)
            )

    for artifact in parsed.artifacts:
        if artifact.change_type != "read" and artifact.path:
            verb = CHANGE_VERBS.get(artifact.change_type, "touched")
            drafts.append(_draft("intent", f"{verb} {artifact.path}", 0.7, scope_path=artifact.path))

    return drafts
