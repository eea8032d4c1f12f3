"""
Cache Sweep Job.
Periodically drops expired mail-cache entries so idle namespaces do not keep
stale data resident until their next read.
"""

import asyncio

from inbox_automation.config import settings
from inbox_automation.infrastructure.observability.logging import get_logger
from inbox_automation.services.cache_service import MailCacheService

logger = get_logger(__name__)


def sweep_cache_once(cache: MailCacheService) -> int:
    removed = cache.sweep_expired()
    if removed:
        logger.debug("Expired cache entries swept", removed=removed, total_size=cache.stats()["total_size"])
    return removed


async def start_cache_sweeper(cache: MailCacheService, interval_seconds: int | None = None) -> None:
    """Sweep ``cache`` forever on a fixed interval; cancel the task to stop."""
    interval = interval_seconds or settings.CACHE_SWEEP_INTERVAL_SECONDS
    logger.info("Starting cache sweeper", interval_seconds=interval)

    while True:
        await asyncio.sleep(interval)
        try:
            sweep_cache_once(cache)
        except Exception as e:
            logger.error("Cache sweep failed", error=str(e), error_type=type(e).__name__)
