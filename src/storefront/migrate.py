"""
Command-line entry point for schema migrations.

    python -m storefront.migrate --action up
    python -m storefront.migrate --action down
    python -m storefront.migrate --action status
"""

import argparse
import logging
import sys
from typing import List, Optional

from storefront.core.logging_config import configure_logging
from storefront.db import init_db
from storefront.domain.reports import MigrationStatus
from storefront.migrations import MigrationManager

logger = logging.getLogger(__name__)


def format_status(statuses: List[MigrationStatus]) -> str:
    lines = [f"{'VERSION':<8} {'NAME':<28} {'STATUS':<8} APPLIED AT", "-" * 72]
    for status in statuses:
        lines.append(
            f"{status.version:<8} {status.name:<28} "
            f"{'applied' if status.applied else 'pending':<8} "
            f"{status.applied_at.isoformat() if status.applied_at else '-'}"
        )
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run storefront database migrations")
    parser.add_argument("--action", choices=["up", "down", "status"], default="up")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    manager = MigrationManager(init_db(args.database_url))

    if args.action == "up":
        applied = manager.run_migrations()
        print(f"Applied {len(applied)} migration(s): {', '.join(applied) or 'none'}")
    elif args.action == "down":
        version = manager.rollback_migration()
        print(f"Rolled back {version}" if version else "Nothing to roll back")
    else:
        print(format_status(manager.get_migration_status()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
