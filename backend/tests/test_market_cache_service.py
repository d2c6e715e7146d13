"""
backend/tests/test_market_cache_service.py

Purpose:
    Cache-first market retrieval: freshness boundary, stale-while-refresh,
    blocking fetch on empty cache and the cache/static fallbacks.

Dependencies:
    - betsim.services.market_cache_service
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from betsim.models.odds import SportCacheMetadata
from betsim.providers.base import BaseOddsGateway, GatewayResult
from betsim.services.market_cache_service import (
    CacheDecision,
    MarketCacheService,
    MarketSource,
    MarketsUnavailable,
    classify,
    is_stale,
    parse_odds_events,
)
from betsim.services.odds_cache_repository import OddsCacheRepository

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(minutes=15)
SPORT = "soccer_epl"


def _raw_event(event_id: str, home_odds: float = 2.45, away_odds: float = 2.90, draw_odds: float = 3.40):
    return {
        "id": event_id,
        "sport_key": SPORT,
        "sport_title": "EPL",
        "commence_time": "2025-06-01T15:00:00Z",
        "home_team": "Manchester United",
        "away_team": "Liverpool",
        "bookmakers": [{
            "key": "fanduel",
            "title": "FanDuel",
            "last_update": "2025-06-01T11:55:00Z",
            "markets": [{
                "key": "h2h",
                "outcomes": [
                    {"name": "Manchester United", "price": home_odds},
                    {"name": "Liverpool", "price": away_odds},
                    {"name": "Draw", "price": draw_odds},
                ],
            }],
        }],
    }


class _Gateway(BaseOddsGateway):
    def __init__(self, results: list[GatewayResult], delay: float = 0.0):
        self._results = list(results)
        self._delay = delay
        self.odds_calls = 0

    async def get_odds(self, sport_key):
        self.odds_calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._results.pop(0) if self._results else GatewayResult.transient("exhausted")

    async def get_scores(self, sport_key, event_ids, days_from):
        return GatewayResult.success([])


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _service(gateway, clock=None, static_source=None) -> MarketCacheService:
    kwargs = {}
    if static_source is not None:
        kwargs["static_source"] = static_source
    return MarketCacheService(
        gateway,
        OddsCacheRepository(),
        clock=clock or _Clock(NOW),
        stale_window=WINDOW,
        **kwargs,
    )


# ---------- Pure decision ----------

def test_staleness_boundary_is_strict():
    meta = SportCacheMetadata(sport_key=SPORT, last_fetch_at=NOW - WINDOW)
    assert is_stale(meta, NOW, WINDOW) is False
    assert is_stale(meta, NOW + timedelta(seconds=1), WINDOW) is True
    assert is_stale(None, NOW, WINDOW) is True


def test_classify_decisions():
    fresh = SportCacheMetadata(sport_key=SPORT, last_fetch_at=NOW - timedelta(minutes=5))
    old = SportCacheMetadata(sport_key=SPORT, last_fetch_at=NOW - timedelta(minutes=20))
    assert classify(fresh, ["e"], NOW, WINDOW) is CacheDecision.SERVE_FRESH
    assert classify(old, ["e"], NOW, WINDOW) is CacheDecision.SERVE_STALE_AND_REFRESH
    assert classify(None, ["e"], NOW, WINDOW) is CacheDecision.SERVE_STALE_AND_REFRESH
    assert classify(fresh, [], NOW, WINDOW) is CacheDecision.FETCH_REQUIRED


def test_parse_drops_events_with_impossible_prices():
    raw = [_raw_event("ok"), _raw_event("bad", home_odds=5.0, away_odds=5.0, draw_odds=5.0)]
    snapshots = parse_odds_events(raw, SPORT, NOW)
    assert [s.event_id for s in snapshots] == ["ok"]
    snap = snapshots[0]
    assert (snap.home_odds, snap.away_odds, snap.draw_odds) == (2.45, 2.90, 3.40)
    assert snap.bookmakers[0].key == "fanduel"
    assert snap.cached_at == NOW


def test_parse_skips_bad_commence_time():
    raw = [_raw_event("x")]
    raw[0]["commence_time"] = "not a date"
    assert parse_odds_events(raw, SPORT, NOW) == []


# ---------- Service paths ----------

@pytest.mark.asyncio
async def test_empty_cache_fetches_and_stores(fake_db):
    gateway = _Gateway([GatewayResult.success([_raw_event("e1"), _raw_event("e2")])])
    service = _service(gateway)

    result = await service.get_markets(SPORT)

    assert result.source is MarketSource.NETWORK
    assert result.refreshed is True
    assert [e.event_id for e in result.events] == ["e1", "e2"]
    assert len(fake_db.odds_cache.docs) == 2
    meta = fake_db.odds_cache_meta.docs[0]
    assert meta["_id"] == SPORT
    assert meta["last_fetch_at"] == NOW
    assert gateway.odds_calls == 1


@pytest.mark.asyncio
async def test_fresh_cache_served_without_network(fake_db):
    clock = _Clock(NOW)
    gateway = _Gateway([GatewayResult.success([_raw_event("e1")])])
    service = _service(gateway, clock)
    await service.get_markets(SPORT)

    clock.now = NOW + WINDOW  # exactly at the boundary: still fresh
    result = await service.get_markets(SPORT)

    assert result.source is MarketSource.CACHE
    assert result.stale is False
    assert gateway.odds_calls == 1


@pytest.mark.asyncio
async def test_stale_cache_served_immediately_and_refreshed_once(fake_db):
    clock = _Clock(NOW)
    gateway = _Gateway(
        [
            GatewayResult.success([_raw_event("e1", home_odds=2.45)]),
            GatewayResult.success([_raw_event("e1", home_odds=2.20)]),
        ],
        delay=0.01,
    )
    service = _service(gateway, clock)
    await service.get_markets(SPORT)

    clock.now = NOW + timedelta(minutes=20)
    first = await service.get_markets(SPORT)
    second = await service.get_markets(SPORT)

    assert first.source is MarketSource.CACHE and first.stale is True
    assert first.events[0].home_odds == 2.45
    assert second.stale is True

    await service.wait_for_refreshes()
    assert gateway.odds_calls == 2  # one initial fetch, one background refresh

    refreshed = await service.get_markets(SPORT)
    assert refreshed.stale is False
    assert refreshed.events[0].home_odds == 2.20


@pytest.mark.asyncio
async def test_background_refresh_failure_keeps_cache(fake_db):
    clock = _Clock(NOW)
    gateway = _Gateway([
        GatewayResult.success([_raw_event("e1")]),
        GatewayResult.transient("HTTP 500", status_code=500),
    ])
    service = _service(gateway, clock)
    await service.get_markets(SPORT)

    clock.now = NOW + timedelta(minutes=30)
    result = await service.get_markets(SPORT)
    await service.wait_for_refreshes()

    assert result.events[0].event_id == "e1"
    assert [d["_id"] for d in fake_db.odds_cache.docs] == ["e1"]
    assert await service.is_cache_stale(SPORT) is True


@pytest.mark.asyncio
async def test_empty_cache_and_network_failure_serves_static(fake_db):
    gateway = _Gateway([GatewayResult.transient("timeout")])
    service = _service(gateway)

    result = await service.get_markets(SPORT)

    assert result.source is MarketSource.STATIC
    assert result.events
    assert all(e.sport_key == SPORT for e in result.events)
    assert fake_db.odds_cache.docs == []


@pytest.mark.asyncio
async def test_nothing_anywhere_raises(fake_db):
    gateway = _Gateway([GatewayResult.permanent("HTTP 401", status_code=401)])
    service = _service(gateway, static_source=lambda sport_key: [])

    with pytest.raises(MarketsUnavailable):
        await service.get_markets("curling_world")


@pytest.mark.asyncio
async def test_refresh_failure_serves_cached_not_refreshed(fake_db):
    gateway = _Gateway([
        GatewayResult.success([_raw_event("e1")]),
        GatewayResult.transient("HTTP 503", status_code=503),
    ])
    service = _service(gateway)
    await service.get_markets(SPORT)

    result = await service.refresh_markets(SPORT)

    assert result.source is MarketSource.CACHE
    assert result.refreshed is False
    assert [e.event_id for e in result.events] == ["e1"]


@pytest.mark.asyncio
async def test_refresh_replaces_sport_events(fake_db):
    gateway = _Gateway([
        GatewayResult.success([_raw_event("e1"), _raw_event("e2")]),
        GatewayResult.success([_raw_event("e3")]),
    ])
    service = _service(gateway)
    await service.get_markets(SPORT)

    result = await service.refresh_markets(SPORT)

    assert result.refreshed is True
    assert [d["_id"] for d in fake_db.odds_cache.docs] == ["e3"]
    assert fake_db.odds_cache_meta.docs[0]["event_count"] == 1


@pytest.mark.asyncio
async def test_storage_failure_on_read_falls_back(fake_db):
    fake_db.odds_cache_meta.fail_next["find_one"] = ServerSelectionTimeoutError("no servers")
    gateway = _Gateway([GatewayResult.transient("timeout")])
    service = _service(gateway)

    result = await service.get_markets(SPORT)

    assert result.source is MarketSource.STATIC


@pytest.mark.asyncio
async def test_purge_expired_removes_old_events(fake_db):
    clock = _Clock(NOW)
    gateway = _Gateway([GatewayResult.success([_raw_event("e1")])])
    service = _service(gateway, clock)
    await service.get_markets(SPORT)

    clock.now = NOW + timedelta(minutes=30)
    assert await service.purge_expired(timedelta(hours=1)) == 0

    clock.now = NOW + timedelta(hours=2)
    assert await service.purge_expired(timedelta(hours=1)) == 1
    assert fake_db.odds_cache.docs == []
