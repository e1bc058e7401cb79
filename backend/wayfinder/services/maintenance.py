"""Scheduled housekeeping jobs."""

import logging
from datetime import datetime, timedelta, timezone

from wayfinder.services.trip_store import TripStore

logger = logging.getLogger(__name__)


async def purge_old_telemetry(store: TripStore, retention_days: int) -> int:
    """Delete telemetry events older than the retention window. Returns rows removed."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    removed = await store.purge_telemetry(cutoff)
    if removed:
        logger.info(f"Telemetry purge: {removed} events older than {cutoff:%Y-%m-%d} removed")
    return removed
