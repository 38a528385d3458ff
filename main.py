"""
main.py
-------
Command-line entry point for pgrecord migrations.

Examples::

    python main.py migrate --models-path app/models
    python main.py rollback --steps 2
    python main.py status
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from config import CONFIG
from core.database import Connection
from core.errors import PgRecordError
from core.migration_generator import run_migrations
from core.migration_manager import MigrationManager
from core.migration_store import MigrationStore
from core.model import Model
from core.registry import MetadataRegistry
from logger import configure_logging, get_logger

log = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgrecord",
        description=f"{CONFIG.app_name} {CONFIG.app_version}: PostgreSQL model migrations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s migrate                      Create tables for every discovered model
  %(prog)s rollback --steps 2           Revert the two most recent batches
  %(prog)s status                       List applied migrations
        """,
    )
    parser.add_argument("--dsn", help="libpq connection string (overrides PGRECORD_DB_*)")
    parser.add_argument(
        "--migrations-path",
        default=str(CONFIG.migration.migrations_path),
        help="Directory holding migration descriptors",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log at DEBUG, including every SQL statement",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    migrate_parser = subparsers.add_parser("migrate", help="Generate and run migrations")
    migrate_parser.add_argument(
        "--models-path",
        default=str(CONFIG.migration.models_path),
        help="Directory scanned for model files",
    )

    rollback_parser = subparsers.add_parser("rollback", help="Revert migration batches")
    rollback_parser.add_argument(
        "-n", "--steps", type=int, default=1, help="Number of batches to revert"
    )

    subparsers.add_parser("status", help="Show applied migrations")
    return parser


def _open_connection(dsn: str | None) -> Connection:
    return Connection.from_dsn(dsn) if dsn else Connection.from_config()


def main(argv: Sequence[str] | None = None) -> int:
    """Run one CLI command; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        configure_logging(level=logging.DEBUG, sql_level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return 1

    try:
        with _open_connection(args.dsn) as conn:
            if args.command == "migrate":
                registry = MetadataRegistry()
                Model.configure(registry=registry, connection=conn)
                result = run_migrations(
                    conn,
                    registry,
                    models_path=args.models_path,
                    migrations_path=args.migrations_path,
                )
                print(result)
            elif args.command == "rollback":
                manager = MigrationManager(conn, store=MigrationStore(args.migrations_path))
                manager.initialize()
                reverted = manager.rollback(args.steps)
                print(f"Rolled back {len(reverted)} migration(s).")
                for name in reverted:
                    print(f"  - {name}")
            elif args.command == "status":
                manager = MigrationManager(conn)
                manager.initialize()
                records = manager.status()
                if not records:
                    print("No migrations applied.")
                for record in records:
                    print(f"  [{record.batch}] {record.name}  {record.executed_at or ''}")
    except PgRecordError as exc:
        log.error("%s failed: %s", args.command, exc)
        print(f"Error ({exc.kind}): {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
