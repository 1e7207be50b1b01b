#!/usr/bin/env python3
"""
Arena engine CLI

Usage:
    python -m arena.cli <command> [options]

Commands:
    init-db          Create database tables
    sweep            Run one tournament status sweep
    notify           Deliver queued / retryable notifications
    assign-groups    Recompute group labels for a tournament
    check-counters   Compare stored participant counters with the real count

Environment:
    DATABASE_URL    Database connection string
    FEATURE_*       See arena.config.feature_flags
"""
import argparse
import logging
from datetime import datetime
from typing import Optional

from arena.cli.engine_commands import EngineCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="arena-cli",
        description="Tournament lifecycle engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sweep
  %(prog)s notify --batch-size 25
  %(prog)s assign-groups --id 42 --reset-pins
  %(prog)s check-counters --id 42 --fix
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--database-url",
        help="Override DATABASE_URL"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")
    sweep_parser = subparsers.add_parser("sweep", help="Run one tournament status sweep")
    sweep_parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        help="Evaluate as of this naive UTC timestamp (YYYY-MM-DDTHH:MM:SS)"
    )

    notify_parser = subparsers.add_parser("notify", help="Deliver queued notifications")
    notify_parser.add_argument("--batch-size", type=int, help="Messages per batch")

    groups_parser = subparsers.add_parser("assign-groups", help="Recompute group labels")
    groups_parser.add_argument("--id", "-i", type=int, required=True, help="Tournament ID")
    groups_parser.add_argument("--reset-pins", action="store_true", help="Discard manual group pins")

    counters_parser = subparsers.add_parser("check-counters", help="Verify participant counters")
    counters_parser.add_argument("--id", "-i", type=int, help="Tournament ID (default: all)")
    counters_parser.add_argument("--fix", action="store_true", help="Rewrite drifted counters")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    return EngineCommand(database_url=parsed.database_url).execute(parsed)
