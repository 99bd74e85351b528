"""
Reconcile Job: nightly consistency pass over hours and uploads.

Recomputes every allocation's used hours from the time logs, reports any
drift it corrected, and sweeps pending uploads that never completed.

Typical cron schedule: 30 2 * * * (daily at 2:30 AM)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..services.attachments import UploadManager
from ..services.hours import HourLedger

logger = logging.getLogger(__name__)

# Differences below this are float noise, not drift
DRIFT_TOLERANCE = 0.001


async def run_reconcile_job(
    database_url: str,
    orphan_age: timedelta | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Main entry point for the reconcile job.

    This function:
    1. Recomputes used hours for every allocation
    2. Sweeps pending uploads older than ``orphan_age``
    3. Logs results

    Args:
        database_url: Database connection string
        orphan_age: Age after which a pending upload is considered orphaned
        dry_run: Roll back instead of committing

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting reconcile job at {start_time.isoformat()}")

    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "allocations_checked": 0,
        "allocations_corrected": 0,
        "drift": [],
        "orphans_removed": 0,
        "dry_run": dry_run,
    }

    try:
        async with session_factory() as session:
            ledger = HourLedger(session)
            for allocation in await ledger.list_allocations():
                before = float(allocation.used_hours or 0)
                after = await ledger.recompute_used_hours(allocation)
                results["allocations_checked"] += 1
                if abs(after - before) > DRIFT_TOLERANCE:
                    results["allocations_corrected"] += 1
                    results["drift"].append(
                        {
                            "allocation_id": str(allocation.id),
                            "organization_id": str(allocation.organization_id),
                            "stored": before,
                            "actual": after,
                        }
                    )
                    logger.warning(
                        f"Allocation {allocation.id} drifted: stored {before}h, actual {after}h"
                    )

            results["orphans_removed"] = await UploadManager(session).sweep_orphans(orphan_age)

            if dry_run:
                await session.rollback()
            else:
                await session.commit()
    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Reconcile job completed in {results['duration_seconds']:.2f}s: "
        f"{results['allocations_corrected']}/{results['allocations_checked']} allocations "
        f"corrected, {results['orphans_removed']} orphaned uploads removed"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the reconcile job."""
    import argparse

    from ..core import get_settings

    parser = argparse.ArgumentParser(description="Recompute hour usage and sweep orphaned uploads")
    parser.add_argument(
        "--database-url",
        default=get_settings().database_url_async,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    parser.add_argument(
        "--orphan-minutes",
        type=int,
        default=None,
        help="Age in minutes after which a pending upload is removed",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report drift without saving corrections",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.database_url:
        logger.error("DATABASE_URL is required")
        raise SystemExit(1)

    orphan_age = timedelta(minutes=args.orphan_minutes) if args.orphan_minutes else None
    try:
        results = asyncio.run(
            run_reconcile_job(args.database_url, orphan_age=orphan_age, dry_run=args.dry_run)
        )
    except Exception as e:
        logger.exception(f"Reconcile job failed: {e}")
        raise SystemExit(1)
    logger.info(f"Job completed: {results}")


if __name__ == "__main__":
    main()
