"""Condense a parsed session into a bounded text digest."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .utils import truncate_to_token_budget

if TYPE_CHECKING:
    from .models import Event, ParsedSession

DEFAULT_TARGET_TOKENS = 8000

READ_ONLY_TOOLS = frozenset({"Read", "View", "Glob", "Grep", "LS"})
WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit"})
SHELL_TOOLS = frozenset({"Bash", "bash"})

SNIPPET_LINES = 10
SHELL_OUTPUT_LINES = 10
ASSISTANT_MIN_CHARS = 50
ASSISTANT_MAX_CHARS = 200


def _input_path(tool_input: dict) -> str:
    value = tool_input.get("file_path") or tool_input.get("notebook_path") or tool_input.get("path") or ""
    return value if isinstance(value, str) else ""


def _written_content(tool_input: dict) -> str:
    content = tool_input.get("content")
    if content is None:
        content = tool_input.get("new_string")
    if content is None and isinstance(tool_input.get("edits"), list):
        content = "\n".join(
            str(edit.get("new_string", "")) for edit in tool_input["edits"] if isinstance(edit, dict)
        )
    return content if isinstance(content, str) else ""


def _snippet(content: str) -> str:
    lines = content.split("\n")
    if len(lines) <= SNIPPET_LINES:
        return content
    head = "\n".join(lines[:5])
    tail = "\n".join(lines[-5:])
    return f"{head}\n...({len(lines) - SNIPPET_LINES} lines omitted)...\n{tail}"


def condense_tool_call(event: Event) -> Optional[str]:
    """Render one tool call, or None when it carries no intent."""
    name = event.tool_name or ""
    tool_input = event.tool_input or {}
    if name in READ_ONLY_TOOLS:
        return None

    if name in WRITE_TOOLS:
        path = _input_path(tool_input)
        if not path:
            return None
        return f"[{name}] {path}\n{_snippet(_written_content(tool_input))}"

    if name in SHELL_TOOLS:
        command = tool_input.get("command") or ""
        output = event.tool_output or ""
        output_lines = output.split("\n")
        rendered = "\n".join(output_lines[:SHELL_OUTPUT_LINES])
        if len(output_lines) > SHELL_OUTPUT_LINES:
            rendered += "\n...(truncated)"
        return f"[Bash] $ {command}\n{rendered}" if rendered else f"[Bash] $ {command}"

    path = _input_path(tool_input)
    return f"[{name}] {path}" if path else f"[{name}]"


def condense(parsed: ParsedSession, target_tokens: int = DEFAULT_TARGET_TOKENS) -> str:
    """Deterministic digest of a session, used for extraction and indexing.

    User prompts are kept verbatim, tool calls are reduced per tool kind,
    short assistant chatter is dropped. Output longer than the token budget
    is cut to the budget's character equivalent with a truncation marker.
    """
    session = parsed.session
    parts = [
        f"Session: {session.id}",
        f"Agent: {session.agent}",
        f"Started: {session.started_at}",
    ]
    if session.ended_at:
        parts.append(f"Ended: {session.ended_at}")
    parts.append("")

    for event in parsed.events:
        if event.type == "user_prompt" and event.content:
            parts.append(f"[User] {event.content}")
            parts.append("")
        elif event.type == "tool_call":
            rendered = condense_tool_call(event)
            if rendered:
                parts.append(rendered)
                parts.append("")
        elif event.type == "assistant_text" and event.content:
            text = event.content
            if len(text) > ASSISTANT_MIN_CHARS:
                if len(text) > ASSISTANT_MAX_CHARS:
                    text = text[:ASSISTANT_MAX_CHARS] + "..."
                parts.append(f"[Assistant] {text}")
                parts.append("")

    result = "\n".join(parts)
    truncated = truncate_to_token_budget(result, target_tokens)
    if truncated != result:
        return truncated + "\n...(truncated)"
    return result
