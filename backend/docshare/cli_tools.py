#!/usr/bin/env python3
"""
CLI tool for operating the share-link service.
Usage: python -m docshare.cli_tools token --user USER_ID [--minutes N]
       python -m docshare.cli_tools stats LINK_ID
"""

import argparse
import asyncio
from typing import Optional

from .auth import create_access_token
from .database import create_db_and_tables, stores
from .stats import LinkStats, StatsAggregator


def issue_token(user_id: str, minutes: Optional[int] = None) -> str:
    """Sign a development bearer token for an existing user and print it."""
    token = create_access_token(user_id, expires_minutes=minutes)
    print(token)
    return token


async def fetch_stats(link_id: str, session_factory=None) -> Optional[LinkStats]:
    session_factory = session_factory or stores.admin
    async with session_factory() as session:
        return await StatsAggregator(session).link_stats(link_id)


def format_stats(stats: LinkStats) -> str:
    last_opened = stats.last_opened.strftime("%Y-%m-%d %H:%M") if stats.last_opened else "Never"
    expires = stats.expires_at.strftime("%Y-%m-%d %H:%M") if stats.expires_at else "Never"
    lines = [
        "-" * 60,
        f"{'Link':<16} {stats.link_id}",
        f"{'Document':<16} {stats.document_id}",
        f"{'Views':<16} {stats.view_count}",
        f"{'Unique viewers':<16} {stats.unique_viewers}",
        f"{'Last opened':<16} {last_opened}",
        f"{'Expires':<16} {expires}",
    ]
    for device, count in sorted(stats.devices.items()):
        lines.append(f"{'  ' + device:<16} {count}")
    lines.append("-" * 60)
    return "\n".join(lines)


def show_stats(link_id: str) -> None:
    async def _run():
        await create_db_and_tables()
        return await fetch_stats(link_id)

    stats = asyncio.run(_run())
    if stats is None:
        print(f"Share link {link_id} not found.")
        return
    print(format_stats(stats))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Share link service CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    token_parser = subparsers.add_parser("token", help="Issue a development bearer token")
    token_parser.add_argument("--user", "-u", required=True, help="User id to put in the token subject")
    token_parser.add_argument("--minutes", "-m", type=int, default=None, help="Token lifetime in minutes")

    stats_parser = subparsers.add_parser("stats", help="Print statistics for a link")
    stats_parser.add_argument("link_id", help="Public link identifier")

    args = parser.parse_args(argv)

    if args.command == "token":
        issue_token(args.user, minutes=args.minutes)
    elif args.command == "stats":
        show_stats(args.link_id)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
