#!/usr/bin/env python3
"""Session Inspector - live viewer for agent session event logs.

Entry point for the CLI application.
"""

import argparse
import asyncio
import logging
import os

from .backend import get_backend
from .config import InspectorConfig
from .engine.filters import display_label
from .models import AgentScope, SessionScope

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, log_file: str | None = None):
    """Log to a file only; the TUI owns the terminal."""
    root = logging.getLogger("session_inspector")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    else:
        root.addHandler(logging.NullHandler())


def _scope_for(args):
    if getattr(args, "agent", None):
        return AgentScope(args.project, args.agent)
    return SessionScope(args.project, args.session)


def _make_backend():
    return get_backend("claude-code", config=InspectorConfig.from_env())


def cmd_browse(args):
    """Launch the TUI inspector."""
    from .app import SessionInspectorApp

    app = SessionInspectorApp(project=args.project, session_id=args.session)
    app.run()


async def _list_projects(args):
    backend = _make_backend()
    return await backend.list_projects()


def cmd_projects(args):
    """List projects that have session logs, most recently active first."""
    projects = asyncio.run(_list_projects(args))
    if not projects:
        print("No projects found.")
        return

    print(f"{'Project':<30} {'Sessions':<10} {'Agents':<8} {'Last Activity':<18} Path")
    print("-" * 100)
    for project in projects:
        when = project.last_activity.strftime("%Y-%m-%d %H:%M") if project.last_activity else "Never"
        print(f"{project.name[:30]:<30} {project.session_count:<10} {project.subagent_count:<8} {when:<18} {project.path}")


async def _list_sessions(args):
    backend = _make_backend()
    return await backend.list_sessions(args.project)


def cmd_sessions(args):
    """List sessions of a project, newest first."""
    sessions = asyncio.run(_list_sessions(args))
    if not sessions:
        print(f"No sessions found for: {args.project}")
        return

    print(f"{len(sessions)} sessions:\n")
    for info in sessions:
        when = info.last_activity.strftime("%Y-%m-%d %H:%M") if info.last_activity else "unknown"
        print(f"  {when}  {info.id}")


async def _list_events(args):
    backend = _make_backend()
    return await backend.list_events(_scope_for(args), args.offset, args.limit)


def cmd_events(args):
    """Print one page of events, newest first."""
    page = asyncio.run(_list_events(args))
    if not page.events:
        print(f"No events (total: {page.total_count})")
        return

    end = page.offset + len(page.events)
    print(f"Events {page.offset}-{end} of {page.total_count}" + (" (more)" if page.has_more else ""))
    print()
    for event in page.events:
        label = display_label(event)
        preview = event.preview.replace("\n", " ")[:80]
        print(f"{event.sequence:>6}  {event.timestamp or '':<24}  {label:<20}  {preview}")


async def _search(args):
    backend = _make_backend()
    return await backend.search_events(_scope_for(args), args.query, args.limit)


def cmd_search(args):
    """Search one session (or sub-agent) log."""
    response = asyncio.run(_search(args))
    if not response.matches:
        print(f"No matches found for: {args.query} ({response.total_searched} lines searched)")
        return

    suffix = " (truncated)" if response.truncated else ""
    print(f"Found {len(response.matches)} matches in {response.total_searched} lines{suffix}:\n")
    for match in response.matches:
        print(f"  #{match.sequence} @{match.byte_offset}")
        print(f"    {match.snippet}")


async def _file_edits(args):
    backend = _make_backend()
    return await backend.list_file_edits(SessionScope(args.project, args.session))


def cmd_edits(args):
    """Print files added or modified in a session."""
    edits = asyncio.run(_file_edits(args))
    if not edits:
        print("No file edits.")
        return

    for edit in edits:
        print(f"  {edit.edit_type:<8}  {edit.last_edited_at or '':<24}  {edit.path}")


async def _file_diffs(args):
    backend = _make_backend()
    return await backend.get_file_diffs(SessionScope(args.project, args.session), args.path)


def cmd_diffs(args):
    """Print every Edit/Write applied to one file in a session."""
    diffs = asyncio.run(_file_diffs(args))
    if not diffs:
        print(f"No changes to: {args.path}")
        return

    for diff in diffs:
        kind = "write" if not diff.old_string else "edit"
        print(f"#{diff.sequence} {kind}  {diff.timestamp or ''}")
        for line in diff.old_string.splitlines():
            print(f"  - {line}")
        for line in diff.new_string.splitlines():
            print(f"  + {line}")
        print()


def main():
    """Main entry point for session-inspector CLI."""
    parser = argparse.ArgumentParser(
        description="Inspect agent session event logs as they grow",
        prog="session-inspector",
    )
    parser.add_argument(
        "--version", "-v",
        action="store_true",
        help="Show version"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging"
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to this file"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    browse_parser = subparsers.add_parser("browse", help="Launch TUI inspector (default)")
    browse_parser.add_argument("project", nargs="?", default=os.getcwd(), help="Project path (default: current directory)")
    browse_parser.add_argument("--session", "-s", help="Session id (default: latest)")

    subparsers.add_parser("projects", help="List projects with session logs")

    sessions_parser = subparsers.add_parser("sessions", help="List sessions of a project")
    sessions_parser.add_argument("project", help="Project path")

    events_parser = subparsers.add_parser("events", help="Print a page of events")
    events_parser.add_argument("project", help="Project path")
    events_parser.add_argument("session", help="Session id")
    events_parser.add_argument("--offset", "-o", type=int, default=0, help="Events to skip from the newest")
    events_parser.add_argument("--limit", "-l", type=int, default=50, help="Page size")
    events_parser.add_argument("--agent", "-a", help="Show a sub-agent log instead")

    search_parser = subparsers.add_parser("search", help="Search a session log")
    search_parser.add_argument("project", help="Project path")
    search_parser.add_argument("session", help="Session id")
    search_parser.add_argument("query", help="Search query (terms, AND, OR)")
    search_parser.add_argument("--limit", "-l", type=int, default=100, help="Max matches")
    search_parser.add_argument("--agent", "-a", help="Search a sub-agent log instead")

    edits_parser = subparsers.add_parser("edits", help="List files edited in a session")
    edits_parser.add_argument("project", help="Project path")
    edits_parser.add_argument("session", help="Session id")

    diffs_parser = subparsers.add_parser("diffs", help="Show the changes made to one file in a session")
    diffs_parser.add_argument("project", help="Project path")
    diffs_parser.add_argument("session", help="Session id")
    diffs_parser.add_argument("path", help="File path (absolute or relative to the project)")

    args = parser.parse_args()

    if args.version:
        from . import __version__
        print(f"session-inspector {__version__}")
        return

    setup_logging(args.debug, args.log_file)

    if args.command == "projects":
        cmd_projects(args)
    elif args.command == "sessions":
        cmd_sessions(args)
    elif args.command == "events":
        cmd_events(args)
    elif args.command == "search":
        cmd_search(args)
    elif args.command == "edits":
        cmd_edits(args)
    elif args.command == "diffs":
        cmd_diffs(args)
    elif args.command == "browse":
        cmd_browse(args)
    else:
        browse_args = argparse.Namespace(project=os.getcwd(), session=None)
        cmd_browse(browse_args)


if __name__ == "__main__":
    main()
