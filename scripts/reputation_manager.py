#!/usr/bin/env python3
"""
Courtside — Reputation Manager: batch jobs and reporting CLI

Subcommands:

  auto-adjust  — Nudge NTRP levels toward observed play for every player.
  recalculate  — Recompute every overall score from its sub-scores.
  stats        — Platform-wide reputation aggregates.
  leaderboard  — Top players by overall reputation.

Usage examples
--------------
  # Nightly skill-level adjustment
  python scripts/reputation_manager.py auto-adjust

  # After changing REPUTATION weights
  python scripts/reputation_manager.py recalculate

  # Top 10 as JSON
  python scripts/reputation_manager.py leaderboard --limit 10 --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.database import async_session_factory, engine
from app.services.reputation_service import ReputationService


async def cmd_auto_adjust(args: argparse.Namespace) -> None:
    service = ReputationService()
    async with async_session_factory() as session:
        summary = await service.run_auto_adjust_batch(session)
        if args.dry_run:
            await session.rollback()
        else:
            await session.commit()
    await engine.dispose()

    print(f"\n  Players checked:  {summary['checked']}")
    print(f"  Levels adjusted:  {summary['adjusted']}")
    print(f"  Failures:         {summary['failed']}")
    if args.dry_run:
        print("  (dry run, nothing was written)")


async def cmd_recalculate(args: argparse.Namespace) -> None:
    service = ReputationService()
    async with async_session_factory() as session:
        updated = await service.recalculate_all_scores(session)
        await session.commit()
    await engine.dispose()
    print(f"\n  Recalculated {updated} reputation scores.")


async def cmd_stats(args: argparse.Namespace) -> None:
    service = ReputationService()
    async with async_session_factory() as session:
        stats = await service.get_reputation_stats(session)
    await engine.dispose()

    if args.json:
        print(json.dumps(stats, indent=2))
        return

    print(f"\n{'=' * 44}")
    print("  Reputation Statistics")
    print(f"{'=' * 44}")
    print(f"  Players with a score:  {stats['total_users']}")
    print(f"  Average overall:       {stats['average_score']}")
    print(f"  High reputation (80+): {stats['high_reputation_users']}")
    print(f"  Active (30 days):      {stats['active_users']}")


async def cmd_leaderboard(args: argparse.Namespace) -> None:
    service = ReputationService()
    async with async_session_factory() as session:
        rows = await service.get_leaderboard(session, limit=args.limit)
    await engine.dispose()

    if args.json:
        print(json.dumps(rows, indent=2, default=str))
        return

    for row in rows:
        print(
            f"  {row['rank']:>3}. {row['display_name']:<24} "
            f"{row['overall_score']:>6.2f}  ({row['total_matches']} matches)"
        )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Courtside Reputation Manager — batch jobs and reports.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available subcommands")

    adjust_parser = subparsers.add_parser(
        "auto-adjust",
        help="Adjust NTRP levels from recent skill-accuracy observations.",
    )
    adjust_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Compute adjustments but roll them back.",
    )

    subparsers.add_parser("recalculate", help="Recompute all overall scores.")

    stats_parser = subparsers.add_parser("stats", help="Platform-wide aggregates.")
    stats_parser.add_argument("--json", action="store_true", default=False)

    board_parser = subparsers.add_parser("leaderboard", help="Top players.")
    board_parser.add_argument("--limit", "-n", type=int, default=20)
    board_parser.add_argument("--json", action="store_true", default=False)

    args = parser.parse_args()

    commands = {
        "auto-adjust": cmd_auto_adjust,
        "recalculate": cmd_recalculate,
        "stats": cmd_stats,
        "leaderboard": cmd_leaderboard,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(1)

    asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    main()
