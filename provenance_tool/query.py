"""The context query entry point: gather, check, rank, pack and log."""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from loguru import logger

if TYPE_CHECKING:
    import sqlite3
    from .models import ContextQuery, ContextResponse, Nugget

EMPTY_WORKSPACE_HINT = (
    "No context recorded for this workspace yet. "
    "Run extraction on its agent sessions to build it."
)
SESSION_NUGGET_LIMIT = 20


def query_type_for(query: ContextQuery) -> str:
    if query.path and query.query:
        return "combined"
    if query.path:
        return "path"
    if query.query:
        return "text"
    if query.symbol:
        return "symbol"
    return "workspace"


def _collect_candidates(conn: sqlite3.Connection, query: ContextQuery) -> tuple:
    from .fts import search_nuggets, search_sessions
    from .nuggets import find_nuggets, find_nuggets_by_workspace, get_nuggets_by_ids, get_nuggets_by_session

    candidates: Dict[int, Nugget] = {}
    fts_ranks: Dict[int, float] = {}

    def _add(nuggets: List[Nugget]) -> None:
        for nugget in nuggets:
            candidates.setdefault(nugget.id, nugget)

    if query.path or query.symbol:
        _add(find_nuggets(conn, query.workspace_id, query.path, query.symbol, query.types, query.since))

    if query.query:
        ranks = search_nuggets(conn, query.query, query.workspace_id)
        fts_ranks.update(dict(ranks))
        _add(get_nuggets_by_ids(conn, [nugget_id for nugget_id, _ in ranks]))
        for session_id, _ in search_sessions(conn, query.query, query.workspace_id):
            _add(get_nuggets_by_session(conn, session_id)[:SESSION_NUGGET_LIMIT])

    if not (query.path or query.symbol or query.query):
        _add(find_nuggets_by_workspace(conn, query.workspace_id, query.types))

    nuggets = list(candidates.values())
    if query.types:
        nuggets = [nugget for nugget in nuggets if nugget.type in query.types]
    if query.since:
        nuggets = [nugget for nugget in nuggets if nugget.extracted_at >= query.since]
    return nuggets, fts_ranks


def build_session_lookup(conn: sqlite3.Connection, session_ids: List[str]) -> Dict[str, Dict[str, str]]:
    from .store import get_sessions

    return {
        session_id: {"agent": session.agent, "date": session.started_at}
        for session_id, session in get_sessions(conn, session_ids).items()
    }


def query_context(
    conn: sqlite3.Connection,
    query: ContextQuery,
    workspace_path: Optional[str] = None,
    agent: Optional[str] = None,
) -> ContextResponse:
    """Answer a context query with ranked, staleness-annotated, budgeted nuggets."""
    from .budget import assemble_response
    from .nuggets import log_context_query
    from .relevance import rank_nuggets
    from .staleness import check_batch_staleness
    from .store import get_workspace

    workspace = get_workspace(conn, query.workspace_id)
    if workspace_path is None:
        workspace_path = workspace.path if workspace else ""

    nuggets, fts_ranks = _collect_candidates(conn, query)
    staleness = check_batch_staleness(conn, nuggets, workspace_path)
    ranked = rank_nuggets(nuggets, query, staleness, fts_ranks)
    lookup = build_session_lookup(conn, [nugget.session_id for nugget in ranked])
    response = assemble_response(ranked, query, lookup)
    if not nuggets:
        response.more_context_hint = EMPTY_WORKSPACE_HINT

    query_type = query_type_for(query)
    log_context_query(
        conn,
        query_type,
        query.path or query.query or query.symbol or "",
        query.workspace_id if workspace else None,
        len(response.nuggets),
        query.token_budget,
        agent,
    )
    logger.debug(
        f"Context query ({query_type}) returned {len(response.nuggets)} of {len(ranked)} nuggets, "
        f"{response.budget.used}/{response.budget.requested} tokens"
    )
    return response
