"""Data models for the provenance tool."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

NUGGET_TYPES = (
    "intent",
    "decision",
    "constraint",
    "rejection",
    "tuning",
    "dependency",
    "workaround",
    "caveat",
)
EVENT_TYPES = ("user_prompt", "assistant_text", "tool_call", "tool_result")
CHANGE_TYPES = ("create", "modify", "delete", "read", "download")
AUTHORS = ("agent", "human", "mixed")
DEPTHS = ("summary", "standard", "deep")
STALE_REASONS = ("file_changed", "superseded", "expired")

MAX_SUMMARY_CHARS = 200
MAX_DETAIL_CHARS = 500


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass
class Workspace:
    id: str
    path: str
    type: str = "folder"
    name: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Session:
    """One agent-assisted working session.

    Discovery returns partially filled sessions (no token total yet); parsing
    fills in the rest.
    """

    id: str
    workspace: Workspace
    agent: str
    started_at: str
    ended_at: Optional[str] = None
    total_tokens: Optional[int] = None
    raw_path: Optional[str] = None
    summary: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Event:
    type: str  # "user_prompt", "assistant_text", "tool_call", "tool_result"
    timestamp: str
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Optional[str] = None


@dataclass
class Artifact:
    path: Optional[str]
    change_type: str  # "create", "modify", "delete", "read", "download"
    author: str = "agent"  # "agent", "human", "mixed"
    type: str = "file"
    uri: Optional[str] = None
    size_bytes: Optional[int] = None
    content_hash: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ParsedSession:
    session: Session
    events: List[Event] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    user_prompts: List[str] = field(default_factory=list)
    agent_artifact_paths: List[str] = field(default_factory=list)


@dataclass
class Nugget:
    """A single extracted provenance fact.

    Drafts are nuggets without an id. Summary and detail are bounded and the
    confidence is clamped to [0, 1] on construction.
    """

    session_id: str
    type: str
    summary: str
    confidence: float
    extracted_at: str
    detail: Optional[str] = None
    scope_path: Optional[str] = None
    scope_symbol: Optional[str] = None
    token_cost: Optional[int] = None
    stale_after: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        self.summary = self.summary[:MAX_SUMMARY_CHARS]
        if self.detail is not None:
            self.detail = self.detail[:MAX_DETAIL_CHARS]
        self.confidence = clamp_confidence(self.confidence)

    @property
    def alternatives(self) -> Optional[List[str]]:
        if not self.metadata:
            return None
        alternatives = self.metadata.get("alternatives")
        if isinstance(alternatives, list) and alternatives:
            return [str(item) for item in alternatives]
        return None


@dataclass
class Decision:
    id: int
    session_id: str
    description: str
    reasoning: Optional[str]
    alternatives: Optional[List[str]]


@dataclass
class StalenessCheck:
    nugget_id: Optional[int]
    is_stale: bool = False
    stale_reason: Optional[str] = None  # "file_changed", "superseded", "expired"
    superseded_by: Optional[int] = None


@dataclass
class ScoredNugget(Nugget):
    score: float = 0.0
    is_stale: bool = False
    stale_reason: Optional[str] = None
    superseded_by: Optional[int] = None


@dataclass
class ContextQuery:
    workspace_id: str
    token_budget: int = 2000
    path: Optional[str] = None
    symbol: Optional[str] = None
    query: Optional[str] = None
    types: Optional[List[str]] = None
    since: Optional[str] = None
    depth: str = "standard"  # "summary", "standard", "deep"

    def __post_init__(self) -> None:
        if self.depth not in DEPTHS:
            raise ValueError(f"Unknown depth '{self.depth}'. Expected one of: {', '.join(DEPTHS)}")
        if self.types:
            unknown = [item for item in self.types if item not in NUGGET_TYPES]
            if unknown:
                raise ValueError(f"Unknown nugget type(s): {', '.join(unknown)}")
        if self.token_budget < 0:
            raise ValueError("Token budget must not be negative")


@dataclass
class ContextBudget:
    requested: int
    used: int
    available: int
    truncated: bool


@dataclass
class ResponseNugget:
    type: str
    summary: str
    scope: str
    confidence: float
    session_date: str
    session_agent: str
    detail: Optional[str] = None
    alternatives: Optional[List[str]] = None
    stale: bool = False
    stale_reason: Optional[str] = None


@dataclass
class ContextResponse:
    query: Dict[str, Any]
    budget: ContextBudget
    nuggets: List[ResponseNugget]
    more_context_hint: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
