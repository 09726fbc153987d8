"""Provenance tool package."""
from __future__ import annotations

from .models import (
    Artifact,
    ContextBudget,
    ContextQuery,
    ContextResponse,
    Decision,
    Event,
    Nugget,
    ParsedSession,
    ResponseNugget,
    ScoredNugget,
    Session,
    StalenessCheck,
    Workspace,
    NUGGET_TYPES,
)
from .database import connect_db, ensure_fts, ensure_schema, init_db, transaction, SCHEMA_VERSION
from .utils import (
    configure_logging,
    estimate_tokens,
    hash_file,
    redact,
    resolve_db_path,
    utc_now,
    workspace_from_path,
)
from .adapters import ClaudeCodeAdapter, TranscriptAdapter, get_adapter
from .condense import condense
from .heuristic import extract_heuristic_nuggets
from .llm import extract_llm_nuggets, generate_text
from .extraction import ensure_extracted, extract_batch
from .store import record_parsed_session
from .nuggets import (
    delete_nuggets_for_session,
    find_nuggets,
    find_nuggets_by_workspace,
    get_coverage,
    get_nuggets_by_session,
    get_query_gaps,
    has_nuggets,
    insert_nuggets,
)
from .fts import build_fts_query, search_nuggets, search_sessions
from .staleness import check_batch_staleness, check_staleness
from .relevance import rank_nuggets, score_nugget
from .budget import assemble_response
from .query import query_context
from .config import load_config, write_default_config
from .share import export_workspace, import_workspace

__all__ = [
    # Models
    "Artifact",
    "ContextBudget",
    "ContextQuery",
    "ContextResponse",
    "Decision",
    "Event",
    "Nugget",
    "ParsedSession",
    "ResponseNugget",
    "ScoredNugget",
    "Session",
    "StalenessCheck",
    "Workspace",
    "NUGGET_TYPES",
    # Database
    "connect_db",
    "ensure_fts",
    "ensure_schema",
    "init_db",
    "transaction",
    "SCHEMA_VERSION",
    # Utils
    "configure_logging",
    "estimate_tokens",
    "hash_file",
    "redact",
    "resolve_db_path",
    "utc_now",
    "workspace_from_path",
    # Adapters
    "ClaudeCodeAdapter",
    "TranscriptAdapter",
    "get_adapter",
    # Extraction
    "condense",
    "extract_heuristic_nuggets",
    "extract_llm_nuggets",
    "generate_text",
    "ensure_extracted",
    "extract_batch",
    # Store
    "record_parsed_session",
    "delete_nuggets_for_session",
    "find_nuggets",
    "find_nuggets_by_workspace",
    "get_coverage",
    "get_nuggets_by_session",
    "get_query_gaps",
    "has_nuggets",
    "insert_nuggets",
    # Search
    "build_fts_query",
    "search_nuggets",
    "search_sessions",
    # Query
    "check_batch_staleness",
    "check_staleness",
    "rank_nuggets",
    "score_nugget",
    "assemble_response",
    "query_context",
    # Interchange
    "load_config",
    "write_default_config",
    "export_workspace",
    "import_workspace",
]
