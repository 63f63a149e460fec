"""
Command-line interface.

Usage:
    continuity status
    continuity compact --aggressive
    continuity checkpoint "before refactor"
    continuity restore <checkpoint id or name>
    continuity branch experiment
    continuity history --limit 20
    continuity restore-context
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from .app import AppContext, build_app
from .config import ContinuityConfig
from .errors import ContinuityError
from .log import format_error, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="continuity",
        description="Track, compact, checkpoint and restore conversation context",
    )
    parser.add_argument("--home", type=Path, help="State directory (default: ./.continuity)")
    parser.add_argument("--config", type=Path, help="Config file path")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and tracebacks")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show token budget and session status")

    compact = commands.add_parser("compact", help="Compact the current context")
    compact.add_argument("--aggressive", action="store_true", help="Summarize every eligible message")

    checkpoint = commands.add_parser("checkpoint", help="Checkpoint the current session")
    checkpoint.add_argument("name")
    checkpoint.add_argument("--description")

    restore = commands.add_parser("restore", help="Restore a checkpoint into the current session")
    restore.add_argument("checkpoint_id")

    branch = commands.add_parser("branch", help="Branch the current session")
    branch.add_argument("label")

    history = commands.add_parser("history", help="Show the current session's history")
    history.add_argument("--limit", type=int, default=50)

    commands.add_parser("restore-context", help="Build and inject the restoration bundle")
    return parser


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_command(app: AppContext, args: argparse.Namespace) -> None:
    """Execute one parsed command against a started app."""
    if args.command == "status":
        session = app.store.current_session
        _print(
            {
                "session_id": session.id if session else None,
                "status": session.status.value if session else None,
                **app.tracker.get_status().to_dict(),
            }
        )
    elif args.command == "compact":
        result = await app.tracker.compact_context(aggressive=args.aggressive)
        _print(asdict(result))
    elif args.command == "checkpoint":
        checkpoint = await app.store.create_checkpoint(name=args.name, description=args.description)
        _print({"checkpoint_id": checkpoint.id, "name": checkpoint.name})
    elif args.command == "restore":
        session = await app.store.restore_checkpoint(args.checkpoint_id)
        _print({"session_id": session.id, "messages": len(session.context.messages)})
    elif args.command == "branch":
        _print(asdict(await app.store.branch_session(args.label)))
    elif args.command == "history":
        _print(app.store.get_session_history()[-args.limit :])
    elif args.command == "restore-context":
        result = await app.restorer.restore_full_context()
        print(result.context)


async def _main(args: argparse.Namespace) -> None:
    config = ContinuityConfig.load(args.config)
    if args.home:
        config.home = args.home
    if args.debug:
        config.debug = True

    app = build_app(config)
    await app.start(autosave=False)
    try:
        await run_command(app, args)
    finally:
        await app.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.debug else "WARNING", debug=args.debug)
    try:
        asyncio.run(_main(args))
    except (ContinuityError, OSError) as e:
        print(format_error(e, args.debug), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
