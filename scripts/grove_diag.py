"""Grove MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from grove_mcp.config import GroveSettings
from grove_mcp.persistence import SnapshotStore
from grove_mcp.session import Session
from grove_mcp.storage import ChromaStore, ChromaUnavailableError


def load_store(settings: GroveSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def load_sessions(settings: GroveSettings) -> list[Session]:
    snapshot = SnapshotStore(settings.resolved_state_file).read()
    if snapshot is None:
        print(f"No readable snapshot at {settings.resolved_state_file}")
        raise SystemExit(1)
    return snapshot.sessions


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = GroveSettings()
    sessions = load_sessions(settings)
    if not args.include_archived:
        sessions = [session for session in sessions if not session.archived]
    if args.json:
        payload = [session.model_dump(mode="json", exclude={"messages"}) for session in sessions]
        print(json.dumps(payload, indent=2))
        return
    for session in sessions:
        flag = " !" if session.needs_intervention else ""
        print(f"{session.id} [{session.status}]{flag} {session.name} -> {session.branch} (${session.cost:.4f})")


def cmd_events(args: argparse.Namespace) -> None:
    settings = GroveSettings()
    store = load_store(settings)
    filters = {"session_id": args.session_id} if args.session_id else None
    events = store.search_events(args.query, filters=filters)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": event.id,
            "session_id": event.session_id,
            "event_type": event.event_type,
            "status": event.metadata.get("status"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = GroveSettings()
    sessions = load_sessions(settings)

    status_counts: dict[str, int] = {}
    for session in sessions:
        status_counts[session.status] = status_counts.get(session.status, 0) + 1

    metrics = {
        "sessions_total": len(sessions),
        "status_counts": status_counts,
        "archived": sum(1 for session in sessions if session.archived),
        "needs_intervention": [session.id for session in sessions if session.needs_intervention],
        "total_cost": round(sum(session.cost for session in sessions), 6),
        "total_tokens": sum(session.tokens_used for session in sessions),
        "messages_total": sum(len(session.messages) for session in sessions),
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grove MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List sessions from the state snapshot")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.add_argument("--include-archived", action="store_true")
    p_sessions.set_defaults(func=cmd_sessions)

    p_events = sub.add_parser("events", help="List journaled lifecycle events")
    p_events.add_argument("--session-id")
    p_events.add_argument("--query", help="Keyword to search for")
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_metrics = sub.add_parser("metrics", help="Show session counts, cost, and token totals")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
