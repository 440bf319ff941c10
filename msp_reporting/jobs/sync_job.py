"""
Sync Cron Job: one full HaloPSA sync, then exit.

Typical cron schedule: 0 */6 * * * (every six hours)

    python -m msp_reporting.jobs.sync_job --months-back 12

Exits non-zero when any sync step failed.
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone

from ..core.config import get_settings
from ..core.database import close_db, get_session_context
from ..integrations.factory import build_upstream_clients
from ..services.sync_engine import FullSyncResult, SyncEngine

logger = logging.getLogger(__name__)


async def run_sync_job(months_back: int) -> FullSyncResult:
    """Run a full sync with freshly built clients and session."""
    settings = get_settings()
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting sync job at {start_time.isoformat()}")

    clients = build_upstream_clients(settings)
    try:
        if clients.halopsa is None:
            raise RuntimeError("HaloPSA credentials are not configured")

        async with get_session_context() as session:
            engine = SyncEngine(
                session,
                clients.halopsa,
                batch_size=settings.sync_ticket_batch_size,
                closed_status_id=settings.halo_closed_status_id,
            )
            result = await engine.perform_full_sync(months_back)
    finally:
        await clients.aclose()
        await close_db()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(f"Sync job completed in {duration:.2f}s: {result.to_dict()}")
    return result


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the sync job."""
    import argparse

    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync HaloPSA data into the reporting store")
    parser.add_argument(
        "--months-back",
        type=int,
        default=settings.sync_default_months_back,
        help="How many months of tickets to fetch",
    )
    args = parser.parse_args()

    if args.months_back < 1:
        parser.error("--months-back must be at least 1")

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        result = asyncio.run(run_sync_job(args.months_back))
    except Exception as e:
        logger.error(f"Sync job failed: {e}")
        sys.exit(1)

    if not result.succeeded:
        logger.error(f"Sync job finished with failed steps: {result.errors}")
        sys.exit(1)


if __name__ == "__main__":
    main()
