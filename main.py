#!/usr/bin/env python3
"""
Main entry point for Slack Import.

Provides a command-line interface to import a Slack export into the chat
store and to inspect the result.
"""
from typing import List, Optional
import argparse
import logging
import os
import sqlite3
import sys
from pathlib import Path

from slack_import.config import get_config
from slack_import.database import StoreConnection
from slack_import.etl.extractors import ArchiveError
from slack_import.etl.pipeline import ImportAbortedError, get_import_status, run_import
from slack_import.etl.validation import validate_store
from slack_import.logger_config import setup_logging
from slack_import.utils import Colors, format_count, truncate
from slack_import.visualization import (
    get_daily_message_counts,
    get_messages_per_room,
    plot_messages_by_room,
    plot_messages_over_time,
)

logger = logging.getLogger(__name__)

# How many per-record errors to echo after an import; the rest are in the log
MAX_PRINTED_ERRORS = 20


def print_section(title: str) -> None:
    """Print a formatted section title."""
    print(f"\n{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{title}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}\n")


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import a Slack export into the chat store.")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to the chat store (defaults to $SLACK_IMPORT_DB_PATH or ~/.slack_import/store.db).",
    )
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a Slack export.")
    import_parser.add_argument(
        "archive",
        nargs="?",
        default=None,
        help="Slack export directory or .zip (defaults to $SLACK_IMPORT_ARCHIVE).",
    )
    import_parser.add_argument(
        "--creator-email",
        default=None,
        help="Email of the existing user that owns imported rooms "
        "(defaults to $SLACK_IMPORT_CREATOR_EMAIL).",
    )
    import_parser.add_argument(
        "--validate",
        action="store_true",
        help="Run the store validation checks after a successful import.",
    )

    subparsers.add_parser("status", help="Show chat store counts and the last import.")
    subparsers.add_parser("validate", help="Run integrity checks on the chat store.")

    plot_parser = subparsers.add_parser("plot", help="Write HTML charts of the imported data.")
    plot_parser.add_argument(
        "--output",
        default="messages_by_room.html",
        help="Room chart output file (default: ./messages_by_room.html).",
    )
    plot_parser.add_argument(
        "--timeline-output",
        default=None,
        help="Optional messages-per-day chart output file.",
    )

    serve_parser = subparsers.add_parser("serve", help="Serve the read-only API.")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _run_import_command(args: argparse.Namespace) -> int:
    config = get_config(
        archive_path=args.archive,
        db_path=args.db_path,
        creator_email=args.creator_email,
    )

    if not config.validate_archive():
        print(f"{Colors.FAIL}Error: Slack export not found or not readable: "
              f"{config.archive_path_str}{Colors.ENDC}")
        return 1
    if not config.creator_email:
        print(f"{Colors.FAIL}Error: --creator-email is required.{Colors.ENDC}")
        return 1

    config.ensure_db_dir()
    print(f"{Colors.OKGREEN}Importing {config.archive_path_str} into {config.db_path_str}{Colors.ENDC}")

    try:
        stats = run_import(config.archive_path, config.db_path, config.creator_email)
    except (ArchiveError, ImportAbortedError, sqlite3.Error) as e:
        print(f"{Colors.FAIL}Import aborted, nothing was written: {e}{Colors.ENDC}")
        logger.exception("Import aborted")
        return 1

    print_section("Import Summary")
    print(stats)

    if stats.errors:
        print_section(f"Record Errors ({len(stats.errors)})")
        for error in stats.errors[:MAX_PRINTED_ERRORS]:
            print(f"{Colors.WARNING}  - {error}{Colors.ENDC}")
        if len(stats.errors) > MAX_PRINTED_ERRORS:
            print(f"  ... and {len(stats.errors) - MAX_PRINTED_ERRORS} more (see log)")

    if args.validate:
        return _run_validate_command(config.db_path)
    return 0


def _run_status_command(db_path: Path) -> int:
    status = get_import_status(db_path)
    if not status["exists"]:
        print(f"{Colors.WARNING}No chat store at {db_path}{Colors.ENDC}")
        return 1
    if not status["schema_valid"]:
        print(f"{Colors.FAIL}{db_path} is not a chat store{Colors.ENDC}")
        return 1

    print_section("Chat Store")
    print(f"Users:       {format_count(status['user_count']):>8}")
    print(f"Rooms:       {format_count(status['room_count']):>8}")
    print(f"Memberships: {format_count(status['membership_count']):>8}")
    print(f"Messages:    {format_count(status['message_count']):>8}")

    print_section("Last Import")
    if not status["last_import_at"]:
        print("No import has run yet.")
        return 0
    print(f"At:      {status['last_import_at']}")
    print(f"Archive: {truncate(status['last_import_archive'] or '', 70)}")
    for key, value in (status["last_import_stats"] or {}).items():
        if key == "errors":
            print(f"  {key:22s}: {len(value):>8}")
        elif isinstance(value, int):
            print(f"  {key:22s}: {value:>8,}")
    return 0


def _run_validate_command(db_path: Path) -> int:
    result = validate_store(db_path)
    print_section("Validation")
    print(result)
    return 0 if result.passed else 1


def _run_plot_command(db_path: Path, output: str, timeline_output: Optional[str]) -> int:
    with StoreConnection(db_path, create=False) as store:
        per_room = get_messages_per_room(store.connection)
        daily = get_daily_message_counts(store.connection)

    plot_messages_by_room(per_room, output_file=output)
    print(f"{Colors.OKGREEN}Room chart written to {output}{Colors.ENDC}")
    if timeline_output:
        plot_messages_over_time(daily, output_file=timeline_output)
        print(f"{Colors.OKGREEN}Timeline chart written to {timeline_output}{Colors.ENDC}")
    return 0


def _run_serve_command(db_path: Path, host: str, port: int) -> int:
    import uvicorn

    os.environ["SLACK_IMPORT_DB_PATH"] = str(db_path)
    uvicorn.run("slack_import.api:app", host=host, port=port)
    return 0


def main(argv: Optional[List[str]] = None):
    """Main function."""
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    setup_logging(log_file=args.log_file)

    if args.command == "import":
        sys.exit(_run_import_command(args))

    db_path = get_config(db_path=args.db_path).db_path
    try:
        if args.command == "status":
            code = _run_status_command(db_path)
        elif args.command == "validate":
            code = _run_validate_command(db_path)
        elif args.command == "plot":
            code = _run_plot_command(db_path, args.output, args.timeline_output)
        else:
            code = _run_serve_command(db_path, args.host, args.port)
    except (FileNotFoundError, sqlite3.Error) as e:
        print(f"{Colors.FAIL}Error: {e}{Colors.ENDC}")
        logger.exception("Error during execution")
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
