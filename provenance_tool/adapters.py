"""Transcript adapters: discover agent sessions and parse them into events."""
from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from .models import Artifact, Event, ParsedSession, Session, Workspace
from .utils import (
    CLAUDE_PROJECTS_DIR,
    format_timestamp,
    get_project_dir,
    normalize_timestamp,
    relativize,
    utc_now,
)

SKIP_MARKERS = (
    '"type":"progress"',
    '"type":"file-history-snapshot"',
    '"type":"queue-operation"',
)
COMMAND_ECHO_PREFIXES = ("<local-command-", "<command-name>")

TOOL_CHANGE_TYPES = {
    "Write": "create",
    "Edit": "modify",
    "MultiEdit": "modify",
    "NotebookEdit": "modify",
    "Read": "read",
}
PATH_INPUT_KEYS = ("file_path", "notebook_path")


class TranscriptAdapter(ABC):
    """Reads one agent's transcript format into the canonical session model."""

    agent_type: str = ""

    @abstractmethod
    def discover(self, workspace: Workspace) -> List[Session]:
        """List the workspace's sessions, newest first."""

    @abstractmethod
    def parse(self, session: Session) -> ParsedSession:
        """Parse a discovered session into events and artifacts."""

    def detect_workspace(self, workspace: Workspace) -> bool:
        return False

    def find_latest(self, workspace: Workspace) -> Optional[Session]:
        sessions = self.discover(workspace)
        return sessions[0] if sessions else None

    def find_in_range(self, workspace: Workspace, since: str, until: str) -> List[Session]:
        """Sessions whose active span overlaps [since, until] (ISO timestamps)."""
        result = []
        for session in self.discover(workspace):
            end = session.ended_at or session.started_at
            if end >= since and session.started_at <= until:
                result.append(session)
        return result

    def parse_many(self, sessions: List[Session], max_workers: int = 4) -> List[ParsedSession]:
        """Parse sessions concurrently; a session that fails to parse is skipped."""
        if not sessions:
            return []

        def _parse(session: Session) -> Optional[ParsedSession]:
            try:
                return self.parse(session)
            except Exception as exc:
                logger.warning(f"Skipping session {session.id}: {exc}")
                return None

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            results = list(executor.map(_parse, sessions))
        return [parsed for parsed in results if parsed is not None]


def _file_time(value: float) -> str:
    return format_timestamp(datetime.fromtimestamp(value, tz=timezone.utc))


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _token_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return 0
    return int(value)


def _block_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return "\n".join(parts) if parts else None
    return None


def _is_command_echo(text: str) -> bool:
    return text.startswith(COMMAND_ECHO_PREFIXES)


def _merge_artifact(artifacts: Dict[str, Artifact], path: str, change_type: str) -> None:
    existing = artifacts.get(path)
    if existing is None:
        artifacts[path] = Artifact(path=path, change_type=change_type, author="agent")
        return
    if change_type == "read" and existing.change_type != "read":
        return
    if existing.change_type == "create" and change_type == "modify":
        return
    existing.change_type = change_type


class _TranscriptState:
    """Accumulates one transcript's events while its lines stream past."""

    def __init__(self, workspace_root: str):
        self.workspace_root = workspace_root
        self.events: List[Event] = []
        self.user_prompts: List[str] = []
        self.artifacts: Dict[str, Artifact] = {}
        self.tool_calls: Dict[str, Event] = {}
        self.input_tokens = 0
        self.output_tokens = 0
        self.first_timestamp: Optional[str] = None
        self.last_timestamp: Optional[str] = None

    def add_line(self, record: dict) -> None:
        timestamp = normalize_timestamp(record.get("timestamp"), self.last_timestamp or utc_now())
        if self.first_timestamp is None:
            self.first_timestamp = timestamp
        self.last_timestamp = timestamp

        message = record.get("message")
        if not isinstance(message, dict):
            return
        usage = message.get("usage")
        if isinstance(usage, dict):
            self.input_tokens += _token_count(usage.get("input_tokens"))
            self.output_tokens += _token_count(usage.get("output_tokens"))

        role = message.get("role")
        if role == "user":
            self._add_user(message.get("content"), timestamp)
        elif role == "assistant":
            self._add_assistant(message.get("content"), timestamp)

    def _add_prompt(self, text: str, timestamp: str) -> None:
        if not text.strip() or _is_command_echo(text):
            return
        self.user_prompts.append(text)
        self.events.append(Event(type="user_prompt", timestamp=timestamp, content=text))

    def _add_user(self, content: Any, timestamp: str) -> None:
        if isinstance(content, str):
            self._add_prompt(content, timestamp)
            return
        if not isinstance(content, list):
            return
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                self._add_prompt(block["text"], timestamp)
            elif block.get("type") == "tool_result":
                output = _block_text(block.get("content"))
                call = self.tool_calls.get(block.get("tool_use_id") or "")
                if call is not None and output is not None:
                    call.tool_output = output
                self.events.append(
                    Event(
                        type="tool_result",
                        timestamp=timestamp,
                        content=output,
                        tool_name=call.tool_name if call is not None else None,
                    )
                )

    def _add_assistant(self, content: Any, timestamp: str) -> None:
        if not isinstance(content, list):
            return
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text" and block.get("text"):
                self.events.append(Event(type="assistant_text", timestamp=timestamp, content=block["text"]))
            elif block_type == "tool_use" and block.get("name"):
                tool_input = block.get("input") if isinstance(block.get("input"), dict) else None
                event = Event(
                    type="tool_call",
                    timestamp=timestamp,
                    tool_name=block["name"],
                    tool_input=tool_input,
                )
                self.events.append(event)
                if block.get("id"):
                    self.tool_calls[block["id"]] = event
                self._track_artifact(block["name"], tool_input)

    def _track_artifact(self, tool_name: str, tool_input: Optional[dict]) -> None:
        change_type = TOOL_CHANGE_TYPES.get(tool_name)
        if change_type is None or not tool_input:
            return
        for key in PATH_INPUT_KEYS:
            target = tool_input.get(key)
            if isinstance(target, str) and target:
                _merge_artifact(self.artifacts, relativize(target, self.workspace_root), change_type)
                return


class ClaudeCodeAdapter(TranscriptAdapter):
    """Claude Code stores one JSONL transcript per session under ~/.claude/projects."""

    agent_type = "claude-code"

    def __init__(self, projects_dir: Optional[str] = None):
        self.projects_dir = projects_dir or CLAUDE_PROJECTS_DIR

    def project_dir(self, workspace: Workspace) -> str:
        return get_project_dir(workspace.path, self.projects_dir)

    def detect_workspace(self, workspace: Workspace) -> bool:
        return os.path.isdir(self.project_dir(workspace))

    def discover(self, workspace: Workspace) -> List[Session]:
        project_dir = self.project_dir(workspace)
        logger.debug(f"Looking for sessions in {project_dir}")
        sessions = self._discover_from_index(project_dir, workspace)
        if sessions is None:
            logger.debug("No usable sessions-index.json, falling back to file scan")
            sessions = self._discover_from_files(project_dir, workspace)
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        logger.debug(f"Found {len(sessions)} sessions")
        return sessions

    def _discover_from_index(self, project_dir: str, workspace: Workspace) -> Optional[List[Session]]:
        index_path = os.path.join(project_dir, "sessions-index.json")
        try:
            with open(index_path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError:
            return None
        try:
            index = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse sessions-index.json in {project_dir}")
            return None
        entries = index.get("sessions") if isinstance(index, dict) else None
        if not isinstance(entries, list):
            return None

        sessions = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("isSidechain") or not entry.get("sessionId"):
                continue
            session_id = str(entry["sessionId"])
            started_at = normalize_timestamp(entry.get("created"), utc_now())
            sessions.append(
                Session(
                    id=session_id,
                    workspace=workspace,
                    agent=self.agent_type,
                    started_at=started_at,
                    ended_at=normalize_timestamp(entry.get("modified")),
                    raw_path=(
                        _str_or_none(entry.get("fullPath"))
                        or os.path.join(project_dir, f"{session_id}.jsonl")
                    ),
                    summary=_str_or_none(entry.get("summary")),
                    metadata={
                        "git_branch": entry.get("gitBranch"),
                        "first_prompt": entry.get("firstPrompt"),
                        "message_count": entry.get("messageCount"),
                    },
                )
            )
        return sessions

    def _discover_from_files(self, project_dir: str, workspace: Workspace) -> List[Session]:
        try:
            names = sorted(name for name in os.listdir(project_dir) if name.endswith(".jsonl"))
        except OSError:
            return []

        sessions = []
        for name in names:
            path = os.path.join(project_dir, name)
            try:
                stat = os.stat(path)
                session_id = name[: -len(".jsonl")]
                started_at = None
                sidechain = False
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    for line in f:
                        if '"file-history-snapshot"' in line:
                            continue
                        try:
                            record = json.loads(line)
                        except json.JSONDecodeError:
                            continue
                        if not isinstance(record, dict):
                            continue
                        message = record.get("message")
                        if isinstance(message, dict) and message.get("role") == "user":
                            session_id = record.get("sessionId") or session_id
                            started_at = normalize_timestamp(record.get("timestamp"))
                            sidechain = bool(record.get("isSidechain"))
                            break
            except OSError as exc:
                logger.debug(f"Failed to process session file {name}: {exc}")
                continue
            if sidechain:
                continue
            sessions.append(
                Session(
                    id=session_id,
                    workspace=workspace,
                    agent=self.agent_type,
                    started_at=started_at or _file_time(stat.st_mtime),
                    ended_at=_file_time(stat.st_mtime),
                    raw_path=path,
                )
            )
        return sessions

    def parse(self, session: Session) -> ParsedSession:
        if not session.raw_path:
            raise ValueError(f"Session {session.id} has no transcript path")
        if not os.path.isfile(session.raw_path):
            raise ValueError(f"Transcript not found: {session.raw_path}")

        state = _TranscriptState(session.workspace.path)
        with open(session.raw_path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                if not line.strip() or any(marker in line for marker in SKIP_MARKERS):
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(record, dict) or record.get("isSidechain"):
                    continue
                try:
                    state.add_line(record)
                except (TypeError, ValueError, AttributeError) as exc:
                    logger.debug(f"Skipping malformed line in {session.raw_path}: {exc}")

        artifacts = list(state.artifacts.values())
        parsed_session = Session(
            id=session.id,
            workspace=session.workspace,
            agent=self.agent_type,
            started_at=state.first_timestamp or session.started_at,
            ended_at=state.last_timestamp or session.ended_at,
            total_tokens=state.input_tokens + state.output_tokens,
            raw_path=session.raw_path,
            summary=session.summary,
            metadata=session.metadata,
        )
        return ParsedSession(
            session=parsed_session,
            events=state.events,
            artifacts=artifacts,
            user_prompts=state.user_prompts,
            agent_artifact_paths=[a.path for a in artifacts if a.path and a.change_type != "read"],
        )


ADAPTERS = {
    ClaudeCodeAdapter.agent_type: ClaudeCodeAdapter,
}
DEFAULT_AGENT = ClaudeCodeAdapter.agent_type


def get_adapter(agent_type: Optional[str] = None, **kwargs: Any) -> TranscriptAdapter:
    """Instantiate the adapter registered for an agent type."""
    agent_type = agent_type or DEFAULT_AGENT
    adapter_cls = ADAPTERS.get(agent_type)
    if adapter_cls is None:
        raise ValueError(f"Unknown agent type '{agent_type}'. Expected one of: {', '.join(sorted(ADAPTERS))}")
    return adapter_cls(**kwargs)
