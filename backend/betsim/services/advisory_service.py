"""
backend/betsim/services/advisory_service.py

Purpose:
    Stores AI match analyses per event and turns them into half-Kelly stake
    advice against the cached market prices. Analyses are bounds-checked on
    the way in. Advice is informational: the ledger never reads it and
    settlement never consults it.

Dependencies:
    - betsim.database
    - betsim.services.kelly_service
    - betsim.services.validation_service
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import betsim.database as _db
from betsim.config import settings
from betsim.models.analysis import AdvisoryResponse, AIAnalysis, StakeAdvice
from betsim.models.odds import OddsSnapshot
from betsim.services.kelly_service import calculate_validated_stake, implied_probabilities
from betsim.services.validation_service import validate_ai_analysis
from betsim.utils import ensure_utc, utcnow

logger = logging.getLogger("betsim.advisory")


class InvalidAnalysis(ValueError):
    pass


def stake_advice(analysis: AIAnalysis, snapshot: Optional[OddsSnapshot]) -> StakeAdvice:
    """Stake advice for the analysis' recommended side, priced off ``snapshot``."""
    if snapshot is None:
        return StakeAdvice(kind="error", reason="No market odds cached for event")
    if analysis.recommendation == "NO_BET":
        return StakeAdvice(kind="no_value", reason="No bet recommended")

    odds = snapshot.odds_for(analysis.recommendation)
    if odds is None:
        return StakeAdvice(kind="no_value", reason=f"No {analysis.recommendation.lower()} odds")

    implied = implied_probabilities(snapshot.home_odds, snapshot.away_odds, snapshot.draw_odds)
    return calculate_validated_stake(
        analysis.probability, implied, odds, analysis.recommendation,
    )


class AdvisoryService:
    def __init__(
        self,
        market_lookup: Callable,
        *,
        clock: Callable[[], datetime] = utcnow,
        stale_window: Optional[timedelta] = None,
    ):
        # async (event_id) -> Optional[OddsSnapshot]
        self._market_lookup = market_lookup
        self._clock = clock
        self.stale_window = stale_window or timedelta(minutes=settings.ANALYSIS_STALE_MINUTES)

    async def store_analysis(self, event_id: str, analysis: AIAnalysis) -> AdvisoryResponse:
        check = validate_ai_analysis(analysis)
        if not check.valid:
            logger.warning("Rejected analysis for event %s: %s", event_id, check.reason)
            raise InvalidAnalysis(check.reason)

        now = self._clock()
        await _db.db.analysis_cache.update_one(
            {"_id": event_id},
            {"$set": {**analysis.model_dump(), "cached_at": now}},
            upsert=True,
        )
        logger.info(
            "Stored analysis for event %s: %s p=%.2f",
            event_id, analysis.recommendation, analysis.probability,
        )
        return await self._respond(event_id, analysis, now)

    async def get_advice(self, event_id: str) -> Optional[AdvisoryResponse]:
        doc = await _db.db.analysis_cache.find_one({"_id": event_id})
        if not doc:
            return None
        analysis = AIAnalysis(
            probability=doc["probability"],
            recommendation=doc["recommendation"],
            confidence=doc["confidence"],
            reasoning=doc.get("reasoning", ""),
        )
        return await self._respond(event_id, analysis, ensure_utc(doc["cached_at"]))

    async def _respond(
        self, event_id: str, analysis: AIAnalysis, cached_at: datetime,
    ) -> AdvisoryResponse:
        snapshot = await self._market_lookup(event_id)
        return AdvisoryResponse(
            event_id=event_id,
            analysis=analysis,
            cached_at=cached_at,
            stale=self._clock() - cached_at > self.stale_window,
            stake=stake_advice(analysis, snapshot),
        )
