"""Per-session extraction scheduling: skip, force, LLM fallback and indexing."""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterable, List, Optional

from loguru import logger

if TYPE_CHECKING:
    import sqlite3
    from .llm import GenerateFn
    from .models import Nugget, ParsedSession


def ensure_extracted(
    conn: sqlite3.Connection,
    parsed: ParsedSession,
    force: bool = False,
    use_llm: bool = False,
    model: Optional[str] = None,
    generate: Optional[GenerateFn] = None,
    timeout_ms: Optional[int] = None,
) -> List[Nugget]:
    """Return the session's nuggets, extracting them first if needed.

    Without ``force`` an already extracted session is returned untouched.
    With ``force`` its nuggets, decisions and index rows are dropped and
    rebuilt. LLM output, when requested and non-empty, replaces the
    heuristic drafts rather than being merged with them. ``timeout_ms``
    bounds each text-generation call. Store errors propagate.
    """
    from .condense import condense
    from .database import transaction
    from .fts import index_session
    from .heuristic import extract_heuristic_nuggets
    from .llm import extract_llm_nuggets
    from .nuggets import delete_nuggets_for_session, get_nuggets_by_session, has_nuggets, write_nugget
    from .store import record_parsed_session

    session = parsed.session
    if not force and has_nuggets(conn, session.id):
        logger.debug(f"Session {session.id} already extracted")
        return get_nuggets_by_session(conn, session.id)

    record_parsed_session(conn, parsed)
    if force:
        removed = delete_nuggets_for_session(conn, session.id)
        logger.debug(f"Removed {removed} nuggets from session {session.id}")

    drafts = extract_heuristic_nuggets(parsed)
    if use_llm:
        llm_drafts = extract_llm_nuggets(parsed, model=model, generate=generate, timeout_ms=timeout_ms)
        if llm_drafts:
            drafts = llm_drafts
        else:
            logger.debug(f"Falling back to heuristic nuggets for session {session.id}")

    with transaction(conn):
        for draft in drafts:
            write_nugget(conn, draft)
        index_session(conn, session.id, session.workspace.id, condense(parsed))

    return get_nuggets_by_session(conn, session.id)


def extract_batch(
    conn: sqlite3.Connection,
    sessions: Iterable[ParsedSession],
    force: bool = False,
    use_llm: bool = False,
    model: Optional[str] = None,
    dry_run: bool = False,
    cancel: Optional[threading.Event] = None,
    generate: Optional[GenerateFn] = None,
    timeout_ms: Optional[int] = None,
) -> dict:
    """Extract many sessions; one session's failure never aborts the rest."""
    from .nuggets import has_nuggets

    result = {"extracted": 0, "skipped": 0, "failed": 0, "cancelled": False}
    for parsed in sessions:
        if cancel is not None and cancel.is_set():
            result["cancelled"] = True
            logger.info("Extraction cancelled")
            break
        session_id = parsed.session.id
        if not force and has_nuggets(conn, session_id):
            result["skipped"] += 1
            continue
        if dry_run:
            result["extracted"] += 1
            continue
        try:
            ensure_extracted(
                conn,
                parsed,
                force=force,
                use_llm=use_llm,
                model=model,
                generate=generate,
                timeout_ms=timeout_ms,
            )
        except Exception as exc:
            logger.warning(f"Extraction failed for session {session_id}: {exc}")
            result["failed"] += 1
            continue
        result["extracted"] += 1

    logger.info(
        f"Extraction finished: {result['extracted']} extracted, "
        f"{result['skipped']} skipped, {result['failed']} failed"
    )
    return result
