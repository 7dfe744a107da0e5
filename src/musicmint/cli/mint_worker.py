"""CLI command for running the mint worker as a standalone process.

Usage:
    python -m musicmint.cli.mint_worker [OPTIONS]

Examples:
    # Run the worker loop until interrupted
    python -m musicmint.cli.mint_worker

    # Process queued jobs once and exit (cron-style)
    python -m musicmint.cli.mint_worker --once

    # Verbose logging
    python -m musicmint.cli.mint_worker -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from musicmint.core import timezone  # noqa: F401
from musicmint.core.config import Settings, configure_logging
from musicmint.core.database import setup_db_session
from musicmint.services.ledger.client import ledger_factory_from_settings
from musicmint.workers.mint_worker import fail_orphaned_jobs, run_mint_worker, run_once

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Mint queued batch-mint jobs on the XRP Ledger",
        epilog="Run exactly one worker per platform wallet",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the pending queue and exit instead of polling forever",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 130 (interrupted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    ledger_factory = ledger_factory_from_settings(settings)

    logger.info("cli.started", once=args.once, xrpl_url=settings.xrpl_url)

    try:
        if args.once:
            if settings.fail_orphaned_jobs_on_startup:
                async with session_factory() as session:
                    await fail_orphaned_jobs(session, settings.orphaned_job_stale_seconds)

            processed = 0
            while await run_once(session_factory, settings, ledger_factory) is not None:
                processed += 1

            print(f"Processed {processed} mint job(s)")
            return 0

        await run_mint_worker(session_factory, settings, ledger_factory)
        return 0

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("cli.interrupted")
        print("\nMint worker stopped", file=sys.stderr)
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
