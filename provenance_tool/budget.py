"""Pack ranked nuggets into a token-budgeted context response."""
from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from .models import ContextBudget, ContextResponse, ResponseNugget
from .utils import estimate_tokens

if TYPE_CHECKING:
    from .models import ContextQuery, ScoredNugget

UNKNOWN_SESSION = {"agent": "unknown", "date": "unknown"}


def _scope_label(nugget: ScoredNugget) -> str:
    return nugget.scope_path or nugget.scope_symbol or "workspace"


def summary_cost(nugget: ScoredNugget) -> int:
    return estimate_tokens(f"{nugget.type}: {nugget.summary} [{_scope_label(nugget)}]")


def detail_cost(nugget: ScoredNugget) -> int:
    text = nugget.detail or ""
    if nugget.alternatives:
        text += " " + ", ".join(nugget.alternatives)
    return estimate_tokens(text)


def _to_response(nugget: ScoredNugget, session_info: Dict[str, str]) -> ResponseNugget:
    return ResponseNugget(
        type=nugget.type,
        summary=nugget.summary,
        scope=_scope_label(nugget),
        confidence=nugget.confidence,
        session_date=session_info["date"],
        session_agent=session_info["agent"],
        stale=nugget.is_stale,
        stale_reason=nugget.stale_reason,
    )


def overflow_hint(overflow: List[ScoredNugget]) -> Optional[str]:
    if not overflow:
        return None
    types = list(dict.fromkeys(nugget.type for nugget in overflow))
    return (
        f"{len(overflow)} more nuggets available (types: {', '.join(types)}). "
        "Increase token budget to see more."
    )


def assemble_response(
    ranked: List[ScoredNugget],
    query: ContextQuery,
    session_lookup: Optional[Dict[str, Dict[str, str]]] = None,
) -> ContextResponse:
    """Two passes over one running token count.

    Pass 1 adds one-line summaries in rank order while they fit, deferring
    the rest to overflow. Pass 2 (skipped at ``summary`` depth) attaches
    detail and alternatives to included nuggets, again only while they fit.
    """
    budget = query.token_budget
    session_lookup = session_lookup or {}
    used = 0
    included: List[ScoredNugget] = []
    responses: List[ResponseNugget] = []
    overflow: List[ScoredNugget] = []

    for nugget in ranked:
        cost = summary_cost(nugget)
        if used + cost <= budget:
            included.append(nugget)
            responses.append(_to_response(nugget, session_lookup.get(nugget.session_id, UNKNOWN_SESSION)))
            used += cost
        else:
            overflow.append(nugget)

    if query.depth != "summary":
        for nugget, response in zip(included, responses):
            if not nugget.detail and not nugget.alternatives:
                continue
            cost = detail_cost(nugget)
            if used + cost <= budget:
                response.detail = nugget.detail
                response.alternatives = nugget.alternatives
                used += cost

    return ContextResponse(
        query={
            "path": query.path,
            "symbol": query.symbol,
            "text": query.query,
            "types": query.types,
            "since": query.since,
            "depth": query.depth,
        },
        budget=ContextBudget(
            requested=budget,
            used=used,
            available=budget - used,
            truncated=bool(overflow),
        ),
        nuggets=responses,
        more_context_hint=overflow_hint(overflow),
    )
