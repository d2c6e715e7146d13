"""Odds cache maintenance: drop cached events nobody has refreshed in a while."""

import logging
from datetime import timedelta
from typing import Optional

from betsim.config import settings
from betsim.services.market_cache_service import MarketCacheService

logger = logging.getLogger("betsim.cache_maintenance")


async def run_cache_maintenance(
    cache: MarketCacheService, max_age: Optional[timedelta] = None,
) -> int:
    """Purge cached events older than ``max_age`` (default: ODDS_CACHE_PURGE_MINUTES)."""
    max_age = max_age or timedelta(minutes=settings.ODDS_CACHE_PURGE_MINUTES)
    removed = await cache.purge_expired(max_age)
    if removed:
        logger.info("Cache maintenance complete: %d events purged", removed)
    else:
        logger.debug("Cache maintenance complete: nothing to purge")
    return removed
