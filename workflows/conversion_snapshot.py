"""
Prefect Workflow Orchestration - Conversion Snapshots

Scheduled refresh of the trailing-window conversion snapshot with:
- Per-website task retries
- Redis caching of the computed payload
- Failure isolation between websites
"""

from datetime import datetime
from typing import List, Optional

from prefect import flow, get_run_logger, task
from redis.exceptions import RedisError

from attribution_engine.cache import close_redis, init_redis, snapshot_cache
from attribution_engine.config import get_settings
from attribution_engine.config.logging import configure_logging
from attribution_engine.conversion import ConversionAnalyticsEngine
from attribution_engine.database import close_database, get_session_factory, init_database
from attribution_engine.exceptions import AttributionEngineError
from attribution_engine.store.sql import SQLEventStore


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="refresh_conversion_snapshot",
    description="Compute and cache one website's conversion snapshot",
    retries=2,
    retry_delay_seconds=60,
)
async def refresh_conversion_snapshot(
    website_id: str,
    timezone: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> dict:
    """Compute the snapshot for ``website_id`` and store it in Redis."""
    logger = get_run_logger()

    engine = ConversionAnalyticsEngine(SQLEventStore(get_session_factory()))
    snapshot = await engine.compute_conversion_snapshot(website_id, timezone=timezone, as_of=as_of)
    await snapshot_cache().set(website_id, snapshot.to_payload())

    logger.info(
        f"Snapshot refreshed for {website_id}: "
        f"{snapshot.total_conversions} conversions in {snapshot.processing_time}ms"
    )
    return {
        "website_id": website_id,
        "total_visitors": snapshot.total_visitors,
        "total_conversions": snapshot.total_conversions,
        "processing_time": snapshot.processing_time,
    }


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="conversion_snapshots",
    description="Refresh cached conversion snapshots",
)
async def conversion_snapshots(
    website_ids: List[str],
    timezone: Optional[str] = None,
) -> dict:
    """
    Refresh snapshots for every website.

    A website whose snapshot fails is reported and skipped; the others
    still refresh.
    """
    logger = get_run_logger()
    settings = get_settings()
    configure_logging(settings.monitoring.log_level)

    await init_database()
    await init_redis()

    results = {"refreshed": [], "failed": {}}
    try:
        for website_id in website_ids:
            try:
                summary = await refresh_conversion_snapshot(website_id, timezone=timezone)
            except (AttributionEngineError, RedisError) as e:
                logger.error(f"Snapshot refresh failed for {website_id}: {e}")
                results["failed"][website_id] = str(e)
                continue
            results["refreshed"].append(summary)
    finally:
        await close_redis()
        await close_database()

    logger.info(
        f"Conversion snapshots complete: {len(results['refreshed'])} refreshed, "
        f"{len(results['failed'])} failed"
    )
    results["status"] = "success" if not results["failed"] else "partial"
    return results


if __name__ == "__main__":
    import asyncio
    import sys

    asyncio.run(conversion_snapshots(sys.argv[1:]))
