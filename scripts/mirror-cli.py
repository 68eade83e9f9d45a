#!/usr/bin/env python3
"""Command-line front end for a Creativity Mirror server.

Signs in, then either submits content for a reflection (the duplicate check,
generation and save run from this client against the API) or prints the
reflection history.

Usage:
    python3 scripts/mirror-cli.py --email me@example.com reflect "Today I painted."
    echo "A poem draft" | python3 scripts/mirror-cli.py --email me@example.com reflect -
    python3 scripts/mirror-cli.py --email me@example.com history --limit 5
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import os
import sys

# Allow running from repo root: add backend/ to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from app.client import MirrorAPIError, MirrorClient
from app.services.workflow import SubmissionOutcome


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Get AI reflections on your creative work.")
    parser.add_argument(
        "--url",
        default=os.environ.get("MIRROR_URL", "http://localhost:8000"),
        help="Server base URL (default: $MIRROR_URL or http://localhost:8000)",
    )
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument(
        "--signup",
        action="store_true",
        help="Create the account first",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up on reflection generation after this many seconds",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    reflect = sub.add_parser("reflect", help="Submit content and print the reflection")
    reflect.add_argument("content", help="Text to reflect on, or '-' to read stdin")
    history = sub.add_parser("history", help="List previous reflections, newest first")
    history.add_argument("--limit", "-n", type=int, default=None)
    return parser


async def _reflect(client: MirrorClient, content: str, timeout: float | None) -> int:
    workflow = client.workflow(generation_timeout=timeout)
    result = await workflow.submit(content)
    if not result.ok:
        print(f"Error: {result.message}", file=sys.stderr)
        return 1 if result.outcome is not SubmissionOutcome.DUPLICATE_CONTENT else 3
    print(result.entry.reflection)
    return 0


async def _history(client: MirrorClient, limit: int | None) -> int:
    entries = await client.list_entries(limit=limit)
    if not entries:
        print("No reflections yet")
        return 0
    for entry in entries:
        print(f"--- {entry.created_at:%Y-%m-%d}")
        print(f"Your input: {entry.content}")
        print(f"Reflection: {entry.reflection}")
        print()
    return 0


async def _run(args: argparse.Namespace, client: MirrorClient, password: str) -> int:
    """Sign in, run the chosen command, sign out. Returns the exit code."""
    try:
        if args.signup:
            await client.signup(args.email, password)
        else:
            await client.login(args.email, password)
    except MirrorAPIError as exc:
        print(f"Sign-in failed: {exc.detail}", file=sys.stderr)
        return 2

    try:
        if args.command == "reflect":
            content = sys.stdin.read() if args.content == "-" else args.content
            return await _reflect(client, content, args.timeout)
        return await _history(client, args.limit)
    except MirrorAPIError as exc:
        print(f"Error: {exc.detail}", file=sys.stderr)
        return 1
    finally:
        try:
            await client.logout()
        except MirrorAPIError as exc:
            print(f"Warning: logout failed: {exc.detail}", file=sys.stderr)


async def _main(args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    async with MirrorClient(base_url=args.url) as client:
        return await _run(args, client, password)


def main() -> int:
    args = _build_parser().parse_args()
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
