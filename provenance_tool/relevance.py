"""Relevance scoring of nuggets against a context query."""
from __future__ import annotations

import math
import posixpath
from dataclasses import asdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .models import ScoredNugget, StalenessCheck

if TYPE_CHECKING:
    from .models import ContextQuery, Nugget

SCOPE_WEIGHT = 0.30
TYPE_WEIGHT = 0.20
RECENCY_WEIGHT = 0.15
CONFIDENCE_WEIGHT = 0.10
FTS_WEIGHT = 0.10

FTS_MATCH_BOOST = 0.15
STALE_PENALTY = 0.3
HALF_LIFE_DAYS = 30

TYPE_PRIORITY = {
    "constraint": 1.0,
    "caveat": 0.9,
    "tuning": 0.8,
    "decision": 0.7,
    "rejection": 0.6,
    "workaround": 0.5,
    "intent": 0.4,
    "dependency": 0.3,
}
DEFAULT_TYPE_PRIORITY = 0.3
TYPE_BOOSTS = {"constraint": 0.2, "caveat": 0.2, "tuning": 0.15}


def scope_match_score(nugget: Nugget, query_path: Optional[str]) -> float:
    if not query_path:
        return 0.5
    if not nugget.scope_path:
        return 0.2
    scope = nugget.scope_path.rstrip("/")
    path = query_path.rstrip("/")
    if scope == path:
        return 1.0
    if path.startswith(scope + "/") or scope.startswith(path + "/"):
        return 0.6
    scope_dir = posixpath.dirname(scope)
    if scope_dir and scope_dir == posixpath.dirname(path):
        return 0.5
    return 0.1


def type_priority(nugget_type: str) -> float:
    return TYPE_PRIORITY.get(nugget_type, DEFAULT_TYPE_PRIORITY)


def recency_score(extracted_at: str, now: Optional[datetime] = None) -> float:
    """Exponential decay with a 30-day half-life."""
    from .utils import parse_timestamp

    extracted = parse_timestamp(extracted_at)
    if extracted is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    days = max(0.0, (now - extracted).total_seconds() / 86400)
    return math.exp(-math.log(2) * days / HALF_LIFE_DAYS)


def score_nugget(
    nugget: Nugget,
    query: ContextQuery,
    staleness: StalenessCheck,
    fts_rank: Optional[float] = None,
    now: Optional[datetime] = None,
) -> ScoredNugget:
    score = (
        SCOPE_WEIGHT * scope_match_score(nugget, query.path)
        + TYPE_WEIGHT * type_priority(nugget.type)
        + RECENCY_WEIGHT * recency_score(nugget.extracted_at, now)
        + CONFIDENCE_WEIGHT * nugget.confidence
    )
    # bm25 ranks are negative; more negative means more relevant
    if fts_rank is not None and fts_rank < 0:
        score += FTS_WEIGHT * min(1.0, abs(fts_rank) / 10) + FTS_MATCH_BOOST
    score += TYPE_BOOSTS.get(nugget.type, 0.0)
    if staleness.is_stale:
        score -= STALE_PENALTY

    fields = asdict(nugget)
    return ScoredNugget(
        **fields,
        score=max(0.0, min(1.0, score)),
        is_stale=staleness.is_stale,
        stale_reason=staleness.stale_reason,
        superseded_by=staleness.superseded_by,
    )


def rank_nuggets(
    nuggets: Iterable[Nugget],
    query: ContextQuery,
    staleness: Dict[int, StalenessCheck],
    fts_ranks: Optional[Dict[int, float]] = None,
    now: Optional[datetime] = None,
) -> List[ScoredNugget]:
    """Score every nugget and sort by score, highest first (stable)."""
    fts_ranks = fts_ranks or {}
    scored = [
        score_nugget(
            nugget,
            query,
            staleness.get(nugget.id) or StalenessCheck(nugget_id=nugget.id),
            fts_ranks.get(nugget.id),
            now,
        )
        for nugget in nuggets
    ]
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored
