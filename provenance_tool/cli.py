#!/usr/bin/env python3
"""Command-line interface for the provenance tool."""
from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from typing import List, Optional

from .adapters import ADAPTERS, DEFAULT_AGENT, get_adapter
from .config import config_path, load_config, write_default_config
from .database import init_db
from .extraction import extract_batch
from .models import DEPTHS, NUGGET_TYPES, ContextQuery
from .nuggets import find_nuggets_by_workspace, get_coverage, get_nuggets_by_session, get_query_gaps, has_nuggets
from .query import query_context
from .share import data_dir, export_workspace, import_workspace
from .store import upsert_workspace
from .utils import configure_logging, normalize_timestamp, resolve_db_path, workspace_from_path


def _split_types(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Provenance context from agent transcripts")
    parser.add_argument("--db", default=None, help="Path to SQLite database (default: $PROVENANCE_DB)")
    parser.add_argument("--workspace", default=os.getcwd(), help="Workspace root (default: current directory)")
    parser.add_argument("--agent", choices=sorted(ADAPTERS), default=DEFAULT_AGENT)
    parser.add_argument("--projects-dir", default=None, help="Agent transcript root override")
    parser.add_argument("--log-level", default=None)

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Initialize the store and workspace config")

    sessions_parser = subparsers.add_parser("sessions", help="List discovered agent sessions")
    sessions_parser.add_argument("--limit", type=int, default=20)

    extract_parser = subparsers.add_parser("extract", help="Extract nuggets from sessions")
    extract_parser.add_argument("--session", default=None, help="Only this session id")
    extract_parser.add_argument("--latest", action="store_true", help="Only the newest session")
    extract_parser.add_argument("--since", default=None)
    extract_parser.add_argument("--until", default=None)
    extract_parser.add_argument("--force", action="store_true")
    extract_parser.add_argument("--llm", action="store_true", help="Use the text-generation command")
    extract_parser.add_argument("--model", default=None)
    extract_parser.add_argument("--timeout-ms", type=int, default=None, help="Per-call text-generation timeout")
    extract_parser.add_argument("--dry-run", action="store_true")
    extract_parser.add_argument("--workers", type=int, default=4)

    context_parser = subparsers.add_parser("context", help="Query provenance context")
    context_parser.add_argument("--path", default=None)
    context_parser.add_argument("--symbol", default=None)
    context_parser.add_argument("--query", default=None)
    context_parser.add_argument("--types", default=None, help=f"Comma list of: {', '.join(NUGGET_TYPES)}")
    context_parser.add_argument("--since", default=None)
    context_parser.add_argument("--budget", type=int, default=2000)
    context_parser.add_argument("--depth", choices=DEPTHS, default="standard")

    nuggets_parser = subparsers.add_parser("nuggets", help="List stored nuggets")
    nuggets_parser.add_argument("--session", default=None)
    nuggets_parser.add_argument("--types", default=None)
    nuggets_parser.add_argument("--limit", type=int, default=50)

    subparsers.add_parser("coverage", help="Show nugget coverage and query gaps")
    subparsers.add_parser("export", help="Export the workspace to interchange files")
    subparsers.add_parser("import", help="Import interchange files into the store")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.log_level)
    db_path = resolve_db_path(args.db)
    workspace = workspace_from_path(args.workspace)

    conn = init_db(db_path)
    try:
        if args.command == "init":
            _handle_init(conn, args, db_path, workspace)
        elif args.command == "sessions":
            _handle_sessions(conn, args, workspace)
        elif args.command == "extract":
            _handle_extract(conn, args, workspace)
        elif args.command == "context":
            _handle_context(conn, args, workspace)
        elif args.command == "nuggets":
            _handle_nuggets(conn, args, workspace)
        elif args.command == "coverage":
            _handle_coverage(conn, args, workspace)
        elif args.command == "export":
            _handle_export(conn, args, workspace)
        elif args.command == "import":
            _handle_import(conn, args, workspace)
    except ValueError as exc:
        print(json.dumps({"ok": False, "error": str(exc)}, indent=2))
        sys.exit(1)
    finally:
        conn.close()


def _adapter(args):
    kwargs = {"projects_dir": args.projects_dir} if args.projects_dir else {}
    return get_adapter(args.agent, **kwargs)


def _handle_init(conn, args, db_path, workspace):
    upsert_workspace(conn, workspace)
    conn.commit()
    path = config_path(workspace.path)
    created = not os.path.exists(path)
    if created:
        write_default_config(workspace.path)
    print(json.dumps({
        "ok": True,
        "db": db_path,
        "workspace_id": workspace.id,
        "config": path,
        "config_created": created,
    }, indent=2))


def _handle_sessions(conn, args, workspace):
    sessions = _adapter(args).discover(workspace)[: args.limit]
    results = [
        {
            "id": s.id,
            "started_at": s.started_at,
            "ended_at": s.ended_at,
            "summary": s.summary,
            "extracted": has_nuggets(conn, s.id),
        }
        for s in sessions
    ]
    print(json.dumps({"ok": True, "workspace_id": workspace.id, "sessions": results}, indent=2))


def _handle_extract(conn, args, workspace):
    adapter = _adapter(args)
    if args.since or args.until:
        since = normalize_timestamp(args.since, "0000-01-01T00:00:00Z")
        until = normalize_timestamp(args.until, "9999-12-31T23:59:59Z")
        sessions = adapter.find_in_range(workspace, since, until)
    else:
        sessions = adapter.discover(workspace)
    if args.session:
        sessions = [s for s in sessions if s.id == args.session]
        if not sessions:
            raise ValueError(f"Session not found: {args.session}")
    elif args.latest:
        sessions = sessions[:1]

    parsed = adapter.parse_many(sessions, max_workers=args.workers)
    result = extract_batch(
        conn,
        parsed,
        force=args.force,
        use_llm=args.llm,
        model=args.model,
        dry_run=args.dry_run,
        timeout_ms=args.timeout_ms,
    )
    print(json.dumps({"ok": True, "dry_run": args.dry_run, "sessions": len(sessions), **result}, indent=2))


def _handle_context(conn, args, workspace):
    query = ContextQuery(
        workspace_id=workspace.id,
        token_budget=args.budget,
        path=args.path,
        symbol=args.symbol,
        query=args.query,
        types=_split_types(args.types),
        since=normalize_timestamp(args.since) if args.since else None,
        depth=args.depth,
    )
    upsert_workspace(conn, workspace)
    conn.commit()
    response = query_context(conn, query, workspace.path, agent="cli")
    print(json.dumps({"ok": True, **response.to_dict()}, indent=2))


def _handle_nuggets(conn, args, workspace):
    if args.session:
        nuggets = get_nuggets_by_session(conn, args.session)[: args.limit]
    else:
        nuggets = find_nuggets_by_workspace(conn, workspace.id, _split_types(args.types), args.limit)
    print(json.dumps({"ok": True, "nuggets": [asdict(n) for n in nuggets]}, indent=2))


def _handle_coverage(conn, args, workspace):
    print(json.dumps({
        "ok": True,
        "coverage": get_coverage(conn, workspace.id),
        "gaps": get_query_gaps(conn, workspace.id),
    }, indent=2))


def _handle_export(conn, args, workspace):
    config = load_config(workspace.path)
    summary = export_workspace(conn, workspace.id, workspace.path, config["export"])
    print(json.dumps({"ok": True, "data_dir": data_dir(workspace.path), "exported": summary}, indent=2))


def _handle_import(conn, args, workspace):
    summary = import_workspace(conn, workspace)
    print(json.dumps({"ok": True, "data_dir": data_dir(workspace.path), "imported": summary}, indent=2))


if __name__ == "__main__":
    main()
