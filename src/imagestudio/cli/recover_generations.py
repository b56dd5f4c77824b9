"""CLI command for failing generations orphaned by a stopped process.

A generation is orphaned when its row is still queued or in progress but no
running process owns its execution task. Run this while the API is stopped;
the API performs the same reconciliation on startup.

Usage:
    python -m imagestudio.cli.recover_generations [OPTIONS]

Examples:
    # Mark all orphaned generations failed
    python -m imagestudio.cli.recover_generations

    # Only list orphaned generations
    python -m imagestudio.cli.recover_generations --dry-run

    # Verbose logging
    python -m imagestudio.cli.recover_generations -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence

import structlog

from imagestudio.core import timezone  # noqa: F401
from imagestudio.core.config import Settings, configure_logging
from imagestudio.core.database import dispose_db_session, setup_db_session
from imagestudio.services.exceptions import StoreError
from imagestudio.services.image_studio.events import EventBroadcaster
from imagestudio.services.image_studio.orchestrator import GenerationOrchestrator
from imagestudio.services.image_studio.store import GenerationStore
from imagestudio.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Mark generations orphaned by an application restart as failed",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List orphaned generations without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    store = GenerationStore(create_uow_factory(session_factory))
    orchestrator = GenerationOrchestrator(store, EventBroadcaster(), settings)

    try:
        orphan_ids = await orchestrator.recover_orphaned_generations(dry_run=args.dry_run)

        print("\n" + "=" * 60)
        print("Generation Recovery Summary")
        print("=" * 60)
        print(f"Orphaned generations: {len(orphan_ids)}")
        for generation_id in orphan_ids[:10]:
            print(f"  - {generation_id}")
        if len(orphan_ids) > 10:
            print(f"  ... and {len(orphan_ids) - 10} more")

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")

        print("=" * 60 + "\n")
        logger.info("cli.success", orphan_count=len(orphan_ids))
        return 0

    except StoreError as e:
        logger.error(
            "cli.store_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    finally:
        await orchestrator.shutdown()
        await dispose_db_session(session_factory)


def main() -> int:
    """Synchronous entry point for CLI.

    Returns:
        Process exit code from async_main
    """
    return asyncio.run(async_main())


if __name__ == "__main__":
    raise SystemExit(main())
