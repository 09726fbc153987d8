"""Query-time staleness checks for nuggets."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from .models import StalenessCheck

if TYPE_CHECKING:
    import sqlite3
    from .models import Nugget


def _workspace_file(workspace_path: str, scope_path: str) -> Optional[str]:
    """Absolute path of a scope inside the workspace, or None if it lies outside."""
    if not workspace_path:
        return None
    root = os.path.realpath(workspace_path)
    candidate = os.path.realpath(os.path.join(root, scope_path))
    if os.path.commonpath([root, candidate]) != root:
        return None
    return candidate


def check_file_drift(conn: sqlite3.Connection, nugget: Nugget, workspace_path: str) -> bool:
    """True when the scoped file's bytes differ from the hash recorded at extraction."""
    from .store import get_artifact_hash
    from .utils import hash_file

    if not nugget.scope_path:
        return False
    full_path = _workspace_file(workspace_path, nugget.scope_path)
    if full_path is None:
        return False
    current_hash = hash_file(full_path)
    if current_hash is None:
        return False
    recorded = get_artifact_hash(conn, nugget.session_id, nugget.scope_path)
    return recorded is not None and recorded != current_hash


def is_expired(nugget: Nugget, now: Optional[datetime] = None) -> bool:
    from .utils import parse_timestamp

    if not nugget.stale_after:
        return False
    expiry = parse_timestamp(nugget.stale_after)
    if expiry is None:
        return False
    return expiry < (now or datetime.now(timezone.utc))


def check_staleness(conn: sqlite3.Connection, nugget: Nugget, workspace_path: str) -> StalenessCheck:
    """Evaluate drift, supersession and expiry in that order; the first hit wins."""
    from .nuggets import find_superseding_nugget

    if check_file_drift(conn, nugget, workspace_path):
        return StalenessCheck(nugget_id=nugget.id, is_stale=True, stale_reason="file_changed")

    newer_id = find_superseding_nugget(conn, nugget)
    if newer_id is not None:
        return StalenessCheck(
            nugget_id=nugget.id,
            is_stale=True,
            stale_reason="superseded",
            superseded_by=newer_id,
        )

    if is_expired(nugget):
        return StalenessCheck(nugget_id=nugget.id, is_stale=True, stale_reason="expired")

    return StalenessCheck(nugget_id=nugget.id)


def check_batch_staleness(
    conn: sqlite3.Connection,
    nuggets: Iterable[Nugget],
    workspace_path: str,
) -> Dict[int, StalenessCheck]:
    return {
        nugget.id: check_staleness(conn, nugget, workspace_path)
        for nugget in nuggets
        if nugget.id is not None
    }
