#!/usr/bin/env python3
"""
Command-line entry point.

    abilities clean [--orphaned] [--missing] [--tenant TENANT] [--dsn DSN]

Without flags, ``clean`` deletes both orphaned abilities and abilities whose
target model no longer exists, printing one line per pass.
"""

import argparse
import asyncio
import sys
from typing import Callable, List, Optional

from shared.config import get_config
from shared.errors import AccessLayerException
from shared.logging import configure_logging, get_logger
from service_abilities.app.cleanup import CleanupService
from service_abilities.app.persistence.postgres import PostgreSQLPersistence
from service_abilities.app.scope import TenantScope

logger = get_logger("abilities.cli")


async def clean(
    cleanup: CleanupService,
    orphaned: bool = False,
    missing: bool = False,
    write: Callable[[str], None] = print
) -> int:
    """Run the cleanup passes, writing one line per pass. Returns the exit code."""
    result = await cleanup.run(orphaned, missing)

    for line in result.messages():
        write(line)

    return 1 if result.failed else 0


async def _run_clean(args: argparse.Namespace) -> int:
    config = get_config("abilities", 0)
    tenant = args.tenant if args.tenant is not None else config.tenant
    scope = TenantScope(tenant, only_relations=config.only_scope_relations)

    repository = PostgreSQLPersistence(
        args.dsn or config.postgres_dsn,
        scope,
        entity_tables=config.entity_tables
    )

    try:
        await repository.start()
    except AccessLayerException as e:
        logger.error("Cleanup storage unavailable", code=e.code, error=e.message)
        print(f"Could not connect to storage: {e.message}", file=sys.stderr)
        return 1

    try:
        return await clean(CleanupService(repository), args.orphaned, args.missing)
    finally:
        await repository.stop()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="abilities", description="Ability maintenance commands.")
    commands = parser.add_subparsers(dest="command", required=True)

    clean_parser = commands.add_parser("clean", help="Delete orphaned abilities and abilities with missing models")
    clean_parser.add_argument("--orphaned", action="store_true", help="Delete abilities no authority is granted")
    clean_parser.add_argument("--missing", action="store_true", help="Delete abilities whose target model was deleted")
    clean_parser.add_argument("--tenant", default=None, help="Tenant to clean (defaults to ABILITIES_TENANT)")
    clean_parser.add_argument("--dsn", default=None, help="PostgreSQL DSN (defaults to ABILITIES_POSTGRES_DSN)")
    clean_parser.add_argument("--log-level", default="warning", help="Log level")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging("abilities", args.log_level)

    if args.command == "clean":
        return asyncio.run(_run_clean(args))

    return 2


if __name__ == "__main__":
    sys.exit(main())
