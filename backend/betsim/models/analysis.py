"""AI advisory models. Advisory output sizes stakes only; it never settles bets."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AIAnalysis(BaseModel):
    probability: float
    recommendation: str  # HOME | AWAY | DRAW | NO_BET
    confidence: float
    reasoning: str = ""


class KellyStakeResult(BaseModel):
    edge: float
    kelly_fraction: float
    half_kelly_fraction: float
    recommended_stake_percent: float  # percent of bankroll, 0-10
    stake_units: int  # 0-5


class StakeAdvice(BaseModel):
    kind: str  # "recommended" | "no_value" | "error"
    reason: str = ""
    edge: Optional[float] = None
    stake_units: int = 0
    stake_percent: float = 0.0


class AdvisoryResponse(BaseModel):
    event_id: str
    analysis: AIAnalysis
    cached_at: datetime
    stale: bool
    stake: Optional[StakeAdvice] = None
