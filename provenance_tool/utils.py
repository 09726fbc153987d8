"""Utility functions for the provenance tool."""
from __future__ import annotations

import hashlib
import math
import os
import re
import sys
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

PROVENANCE_HOME = os.path.expanduser(os.environ.get("PROVENANCE_HOME", "~/.provenance"))
DEFAULT_DB_PATH = os.path.join(PROVENANCE_HOME, "store.db")
CLAUDE_PROJECTS_DIR = os.path.expanduser(
    os.environ.get("PROVENANCE_CLAUDE_PROJECTS", "~/.claude/projects")
)

WORKSPACE_DIRNAME = ".provenance"
DATA_SUBDIR = os.path.join(WORKSPACE_DIRNAME, "data")
CONFIG_FILE = os.path.join(WORKSPACE_DIRNAME, "config.json")

DEFAULT_LLM_COMMAND = os.environ.get(
    "PROVENANCE_LLM_COMMAND", "claude -p --output-format json --max-turns 1"
)
DEFAULT_LLM_MODEL = os.environ.get("PROVENANCE_LLM_MODEL", "sonnet")
try:
    DEFAULT_LLM_TIMEOUT_MS = int(os.environ.get("PROVENANCE_LLM_TIMEOUT_MS", "60000"))
except ValueError:
    DEFAULT_LLM_TIMEOUT_MS = 60000

REDACTION_MARKER = "[REDACTED]"
SECRET_PATTERNS = [
    re.compile(r"\bsk-[a-zA-Z0-9]{20,}\b"),
    re.compile(r"\bghp_[a-zA-Z0-9]{36,}\b"),
    re.compile(r"\bghs_[a-zA-Z0-9]{36,}\b"),
    re.compile(r"\bAKIA[A-Z0-9]{16}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{40,}={0,2}"),
]


def utc_now() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without fraction/offset) as UTC.

    Anything that is not a non-empty string parses to None.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: object, default: Optional[str] = None) -> Optional[str]:
    """Normalize any ISO timestamp to ISO_FORMAT, or return default."""
    parsed = parse_timestamp(value) if value else None
    if parsed is None:
        return default
    return parsed.strftime(ISO_FORMAT)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def resolve_db_path(explicit_db: str | None) -> str:
    """Resolve database path from explicit path or environment."""
    if explicit_db:
        return os.path.expanduser(explicit_db)
    return os.path.expanduser(os.environ.get("PROVENANCE_DB", DEFAULT_DB_PATH))


def estimate_tokens(text: str) -> int:
    """Estimate token count as text length / 4, rounded up."""
    return math.ceil(len(text) / 4)


def truncate_to_token_budget(text: str, budget: int) -> str:
    """Cut text to roughly budget tokens (4 chars each)."""
    char_budget = budget * 4
    if len(text) <= char_budget:
        return text
    return text[:char_budget]


def hash_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()[:16]


def hash_file(path: str) -> Optional[str]:
    """Return a 16-char sha256 hex digest of a file, or None if unreadable."""
    try:
        with open(path, "rb") as f:
            return hash_bytes(f.read())
    except OSError:
        return None


def redact(text: str) -> str:
    """Replace secret-shaped tokens with a fixed marker."""
    result = text
    for pattern in SECRET_PATTERNS:
        result = pattern.sub(REDACTION_MARKER, result)
    return result


def redact_optional(text: Optional[str]) -> Optional[str]:
    return redact(text) if text is not None else None


def project_hash(abs_path: str) -> str:
    """Convert an absolute path to a Claude-style project directory name."""
    return re.sub(r"[/\\]", "-", abs_path)


def get_project_dir(abs_path: str, projects_dir: Optional[str] = None) -> str:
    return os.path.join(projects_dir or CLAUDE_PROJECTS_DIR, project_hash(abs_path))


def relativize(path: str, root: str) -> str:
    """Make path relative to root when it lives under root."""
    if not root:
        return path
    root = root.rstrip("/\\")
    if path == root:
        return "."
    if path.startswith(root + "/") or path.startswith(root + os.sep):
        return os.path.relpath(path, root)
    return path


def workspace_id_for(workspace_type: str, abs_path: str) -> str:
    normalized = abs_path.rstrip("/") or "/"
    digest = hashlib.sha256(f"{workspace_type}:{normalized}".encode("utf-8")).hexdigest()
    return f"ws_{digest[:12]}"


def workspace_from_path(path: str, workspace_type: str = "folder"):
    """Build a Workspace for a directory, keyed by a stable path hash."""
    from .models import Workspace

    abs_path = os.path.abspath(os.path.expanduser(path))
    return Workspace(
        id=workspace_id_for(workspace_type, abs_path),
        path=abs_path,
        type=workspace_type,
        name=os.path.basename(abs_path.rstrip("/")) or abs_path,
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Route loguru output to stderr at the configured level."""
    if level is None:
        level = os.environ.get("PROVENANCE_LOG_LEVEL")
    if level is None:
        level = "DEBUG" if os.environ.get("PROVENANCE_DEBUG") == "1" else "WARNING"
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format="[{level}] {message}")
