"""
backend/tests/test_cache_maintenance.py

Purpose:
    Periodic odds cache purge.

Dependencies:
    - betsim.workers.cache_maintenance
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from betsim.workers.cache_maintenance import run_cache_maintenance


class _Cache:
    def __init__(self, removed: int):
        self.removed = removed
        self.max_ages: list[timedelta] = []

    async def purge_expired(self, max_age):
        self.max_ages.append(max_age)
        return self.removed


@pytest.mark.asyncio
async def test_purge_uses_configured_age(monkeypatch):
    from betsim.workers import cache_maintenance

    monkeypatch.setattr(cache_maintenance.settings, "ODDS_CACHE_PURGE_MINUTES", 90, raising=False)
    cache = _Cache(removed=4)

    assert await run_cache_maintenance(cache) == 4
    assert cache.max_ages == [timedelta(minutes=90)]


@pytest.mark.asyncio
async def test_purge_with_explicit_age():
    cache = _Cache(removed=0)
    assert await run_cache_maintenance(cache, timedelta(hours=1)) == 0
    assert cache.max_ages == [timedelta(hours=1)]
