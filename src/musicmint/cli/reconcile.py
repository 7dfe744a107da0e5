"""CLI command for running inventory reconciliation passes.

Usage:
    python -m musicmint.cli.reconcile PASS [OPTIONS]

Examples:
    # Rebuild sold counters from sale rows for every release
    python -m musicmint.cli.reconcile sync_counters

    # Preview ledger custody sync for one release
    python -m musicmint.cli.reconcile sync_from_ledger --release-id rel_abc --dry-run

    # Counter sync, edition renumbering and custody sync in one go
    python -m musicmint.cli.reconcile all

    # Read-only custody report
    python -m musicmint.cli.reconcile diagnose_inventory -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from musicmint.core import timezone  # noqa: F401
from musicmint.core.config import Settings, configure_logging
from musicmint.core.database import setup_db_session
from musicmint.services.exceptions import (
    LedgerConnectionError,
    LedgerRequestError,
    ReconciliationError,
)
from musicmint.services.ledger.client import ledger_factory_from_settings
from musicmint.services.reconciliation.engine import PASS_NAMES, PassResult, ReconciliationEngine
from musicmint.uow import create_uow_factory

logger = structlog.get_logger()

LEDGER_PASSES = ("sync_from_ledger", "backfill_inventory", "diagnose_inventory")


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Repair drift between sale rows, inventory and ledger custody",
        epilog="Sale rows are authoritative; ledger custody only for legacy releases",
    )

    parser.add_argument("pass_name", choices=[*PASS_NAMES, "all"], help="Pass to run")

    parser.add_argument("--release-id", help="Limit the pass to one release")

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report planned fixes without database writes",
    )

    parser.add_argument(
        "--older-than-minutes",
        type=int,
        help="Staleness threshold for reset_stale_reservations",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


def print_result(result: PassResult) -> None:
    print("\n" + "=" * 60)
    print(f"Pass: {result.name}")
    print("=" * 60)
    print(f"Rows checked: {result.checked}")
    print(f"Fixes {'planned' if result.dry_run else 'applied'}: {len(result.fixes)}")
    for fix in result.fixes[:10]:
        print(f"  - {fix}")
    if len(result.fixes) > 10:
        print(f"  ... and {len(result.fixes) - 10} more fixes")

    if result.skipped:
        print(f"Skipped: {len(result.skipped)}")
        for skipped in result.skipped[:5]:
            print(f"  - {skipped}")

    if result.details:
        flagged = [row for row in result.details if row.get("has_discrepancy")]
        print(f"Tracks with discrepancies: {len(flagged)}")
        for row in flagged:
            print(f"  - {row}")

    if result.errors:
        print(f"\nErrors encountered: {len(result.errors)}")
        for error in result.errors[:5]:
            print(f"  - {error}")
        if len(result.errors) > 5:
            print(f"  ... and {len(result.errors) - 5} more errors")


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (completed with row errors)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    logger.info(
        "cli.started",
        pass_name=args.pass_name,
        release_id=args.release_id,
        dry_run=args.dry_run,
    )

    needs_ledger = args.pass_name in LEDGER_PASSES or args.pass_name == "all"
    ledger_factory = None
    if needs_ledger and settings.platform_wallet_seed:
        ledger_factory = ledger_factory_from_settings(settings)
    elif args.pass_name in LEDGER_PASSES:
        print("Error: PLATFORM_WALLET_SEED is required for ledger passes", file=sys.stderr)
        return 1

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    engine = ReconciliationEngine(settings, ledger_factory=ledger_factory)

    try:
        async with await uow_factory() as uow:
            if args.pass_name == "all":
                results = await engine.run_all(
                    uow, release_id=args.release_id, dry_run=args.dry_run
                )
            elif args.pass_name == "reset_stale_reservations":
                results = [
                    await engine.reset_stale_reservations(
                        uow, older_than_minutes=args.older_than_minutes, dry_run=args.dry_run
                    )
                ]
            else:
                results = [
                    await engine.run_pass(
                        uow, args.pass_name, release_id=args.release_id, dry_run=args.dry_run
                    )
                ]

        for result in results:
            print_result(result)

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")
        print("=" * 60 + "\n")

        if any(result.errors for result in results):
            logger.warning("cli.partial_success")
            return 2
        logger.info("cli.success")
        return 0

    except (ReconciliationError, LedgerConnectionError, LedgerRequestError) as e:
        logger.error("cli.reconciliation_error", error=str(e), error_type=type(e).__name__)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nReconciliation interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
