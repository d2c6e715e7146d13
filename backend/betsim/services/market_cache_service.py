"""
backend/betsim/services/market_cache_service.py

Purpose:
    Cache-first odds access. Cached markets are served straight away while
    fresh. Stale cache is served too, with one background refresh per sport.
    The network is only awaited when nothing is cached, and bundled static
    markets stand in when that fetch fails. The cache decision is the pure
    classify() function. The I/O for each branch lives in MarketCacheService.

Dependencies:
    - betsim.providers.base
    - betsim.providers.static_markets
    - betsim.services.odds_cache_repository
    - betsim.services.validation_service
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from pymongo.errors import PyMongoError

from betsim.config import settings
from betsim.models.odds import (
    BookmakerOdds,
    MarketsResponse,
    OddsSnapshot,
    SportCacheMetadata,
)
from betsim.providers.base import BaseOddsGateway
from betsim.providers.static_markets import static_events
from betsim.services.odds_cache_repository import OddsCacheRepository
from betsim.services.validation_service import validate_market_prices
from betsim.utils import ensure_utc, parse_utc, utcnow
from betsim.utils.odds_utils import h2h_prices

logger = logging.getLogger("betsim.market_cache")


class MarketsUnavailable(Exception):
    """No market data for the sport from cache, network or bundled data."""


class CacheDecision(str, Enum):
    SERVE_FRESH = "serve_fresh"
    SERVE_STALE_AND_REFRESH = "serve_stale_and_refresh"
    FETCH_REQUIRED = "fetch_required"


class MarketSource(str, Enum):
    CACHE = "cache"
    NETWORK = "network"
    STATIC = "static"


@dataclass
class MarketsResult:
    sport_key: str
    events: list[OddsSnapshot]
    source: MarketSource
    stale: bool = False
    refreshed: bool = False

    def to_response(self) -> MarketsResponse:
        return MarketsResponse(
            sport_key=self.sport_key,
            source=self.source.value,
            stale=self.stale,
            refreshed=self.refreshed,
            events=self.events,
        )


def is_stale(
    metadata: Optional[SportCacheMetadata], now: datetime, stale_window: timedelta,
) -> bool:
    """Age strictly greater than the window is stale; missing metadata is stale."""
    if metadata is None:
        return True
    return ensure_utc(now) - ensure_utc(metadata.last_fetch_at) > stale_window


def classify(
    metadata: Optional[SportCacheMetadata],
    events: list[Any],
    now: datetime,
    stale_window: timedelta,
) -> CacheDecision:
    if not events:
        return CacheDecision.FETCH_REQUIRED
    if is_stale(metadata, now, stale_window):
        return CacheDecision.SERVE_STALE_AND_REFRESH
    return CacheDecision.SERVE_FRESH


def parse_odds_events(
    raw: list[dict[str, Any]], sport_key: str, captured_at: datetime,
) -> list[OddsSnapshot]:
    """Turn raw TheOddsAPI events into snapshots, dropping unusable ones.

    The headline price is the first bookmaker whose h2h set passes the
    market price sanity check. Events without any sane bookmaker, or without
    a parseable commence time, are skipped.
    """
    snapshots = []
    for event in raw:
        event_id = event.get("id")
        home_team = event.get("home_team") or ""
        away_team = event.get("away_team") or ""
        if not event_id or not home_team or not away_team:
            logger.warning("Skipping %s event without id/teams: %r", sport_key, event_id)
            continue

        try:
            commence_time = parse_utc(event["commence_time"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping event %s: bad commence_time", event_id)
            continue

        bookmakers: list[BookmakerOdds] = []
        for bookmaker in event.get("bookmakers") or []:
            for market in bookmaker.get("markets") or []:
                prices = h2h_prices(market, home_team, away_team)
                if prices is None:
                    continue
                check = validate_market_prices(prices["home"], prices["away"], prices.get("draw"))
                if not check.valid:
                    logger.warning(
                        "Rejected %s prices for event %s: %s",
                        bookmaker.get("key"), event_id, check.reason,
                    )
                    break
                last_update = bookmaker.get("last_update")
                bookmakers.append(BookmakerOdds(
                    key=str(bookmaker.get("key", "")),
                    title=str(bookmaker.get("title", "")),
                    last_update=parse_utc(last_update) if last_update else None,
                    home=prices["home"],
                    away=prices["away"],
                    draw=prices.get("draw"),
                ))
                break

        if not bookmakers:
            logger.warning("Skipping event %s: no valid h2h prices", event_id)
            continue

        headline = bookmakers[0]
        snapshots.append(OddsSnapshot(
            event_id=str(event_id),
            sport_key=event.get("sport_key") or sport_key,
            sport_title=event.get("sport_title") or "",
            home_team=home_team,
            away_team=away_team,
            commence_time=commence_time,
            home_odds=headline.home,
            away_odds=headline.away,
            draw_odds=headline.draw,
            bookmakers=bookmakers,
            cached_at=captured_at,
        ))
    return snapshots


class MarketCacheService:
    def __init__(
        self,
        gateway: BaseOddsGateway,
        repository: Optional[OddsCacheRepository] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        stale_window: Optional[timedelta] = None,
        static_source: Callable[[str], list[dict[str, Any]]] = static_events,
    ):
        self._gateway = gateway
        self._repository = repository or OddsCacheRepository()
        self._clock = clock
        self.stale_window = stale_window or timedelta(minutes=settings.ODDS_STALE_MINUTES)
        self._static_source = static_source
        self._refresh_tasks: dict[str, asyncio.Task] = {}

    async def get_markets(self, sport_key: str) -> MarketsResult:
        now = self._clock()
        try:
            metadata = await self._repository.get_metadata(sport_key)
            cached = await self._repository.get_events(sport_key)
        except PyMongoError:
            logger.error("Odds cache read failed for %s", sport_key, exc_info=True)
            metadata, cached = None, []

        decision = classify(metadata, cached, now, self.stale_window)
        logger.debug("Cache check for %s: %s (%d cached)", sport_key, decision.value, len(cached))

        if decision is CacheDecision.SERVE_FRESH:
            return MarketsResult(sport_key, cached, MarketSource.CACHE)

        if decision is CacheDecision.SERVE_STALE_AND_REFRESH:
            self._schedule_background_refresh(sport_key)
            return MarketsResult(sport_key, cached, MarketSource.CACHE, stale=True)

        fetched = await self._fetch_and_store(sport_key)
        if fetched is not None:
            return MarketsResult(sport_key, fetched, MarketSource.NETWORK, refreshed=True)
        return self._static_fallback(sport_key)

    async def refresh_markets(self, sport_key: str) -> MarketsResult:
        """Fetch and overwrite regardless of staleness (explicit user refresh).

        On failure whatever is cached is served (marked not refreshed), then
        the bundled data.
        """
        fetched = await self._fetch_and_store(sport_key)
        if fetched is not None:
            return MarketsResult(sport_key, fetched, MarketSource.NETWORK, refreshed=True)

        try:
            cached = await self._repository.get_events(sport_key)
        except PyMongoError:
            logger.error("Odds cache read failed for %s", sport_key, exc_info=True)
            cached = []
        if cached:
            return MarketsResult(sport_key, cached, MarketSource.CACHE, stale=True)
        return self._static_fallback(sport_key)

    async def is_cache_stale(self, sport_key: str) -> bool:
        metadata = await self._repository.get_metadata(sport_key)
        return is_stale(metadata, self._clock(), self.stale_window)

    async def get_event(self, event_id: str) -> Optional[OddsSnapshot]:
        return await self._repository.get_event(event_id)

    async def purge_expired(self, max_age: timedelta) -> int:
        removed = await self._repository.purge_older_than(self._clock() - max_age)
        if removed:
            logger.info("Purged %d expired cached events", removed)
        return removed

    async def wait_for_refreshes(self) -> None:
        """Await all in-flight background refreshes (shutdown and tests)."""
        tasks = list(self._refresh_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---------- internals ----------

    async def _fetch_and_store(self, sport_key: str) -> Optional[list[OddsSnapshot]]:
        """One network fetch; returns None on any gateway failure."""
        result = await self._gateway.get_odds(sport_key)
        if not result.ok:
            logger.warning(
                "Odds fetch failed for %s (%s): %s",
                sport_key, result.status.value, result.error,
            )
            return None

        captured_at = self._clock()
        snapshots = parse_odds_events(result.data or [], sport_key, captured_at)
        try:
            await self._repository.replace_sport(sport_key, snapshots, captured_at)
        except PyMongoError:
            # Data is still good for this caller; the next read refetches.
            logger.error("Failed to cache %d events for %s", len(snapshots), sport_key, exc_info=True)
        logger.info("Fetched %d markets for %s", len(snapshots), sport_key)
        return snapshots

    def _static_fallback(self, sport_key: str) -> MarketsResult:
        snapshots = parse_odds_events(self._static_source(sport_key), sport_key, self._clock())
        if not snapshots:
            raise MarketsUnavailable(sport_key)
        logger.warning("Serving bundled static markets for %s", sport_key)
        return MarketsResult(sport_key, snapshots, MarketSource.STATIC)

    def _schedule_background_refresh(self, sport_key: str) -> None:
        running = self._refresh_tasks.get(sport_key)
        if running is not None and not running.done():
            logger.debug("Refresh for %s already in flight", sport_key)
            return
        task = asyncio.get_running_loop().create_task(self._background_refresh(sport_key))
        self._refresh_tasks[sport_key] = task
        task.add_done_callback(lambda t, key=sport_key: self._forget_refresh(key, t))

    def _forget_refresh(self, sport_key: str, task: asyncio.Task) -> None:
        if self._refresh_tasks.get(sport_key) is task:
            del self._refresh_tasks[sport_key]

    async def _background_refresh(self, sport_key: str) -> None:
        try:
            snapshots = await self._fetch_and_store(sport_key)
        except Exception:
            logger.error("Background refresh crashed for %s", sport_key, exc_info=True)
            return
        if snapshots is not None:
            logger.debug("Background refresh complete for %s", sport_key)
