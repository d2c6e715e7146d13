"""Odds snapshot and cache metadata models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class BookmakerOdds(BaseModel):
    """One bookmaker's head-to-head prices for an event."""
    key: str
    title: str
    last_update: Optional[datetime] = None
    home: float
    away: float
    draw: Optional[float] = None


class OddsSnapshot(BaseModel):
    """Current h2h market for one event. Replaced wholesale on every refresh."""
    event_id: str
    sport_key: str
    sport_title: str = ""
    home_team: str
    away_team: str
    commence_time: datetime
    home_odds: float
    away_odds: float
    draw_odds: Optional[float] = None
    bookmakers: list[BookmakerOdds] = Field(default_factory=list)
    cached_at: datetime

    @property
    def match_name(self) -> str:
        return f"{self.home_team} vs {self.away_team}"

    def odds_for(self, selection: str) -> Optional[float]:
        """Headline price for a canonical selection (HOME/AWAY/DRAW)."""
        return {
            "HOME": self.home_odds,
            "AWAY": self.away_odds,
            "DRAW": self.draw_odds,
        }.get(selection)


class SportCacheMetadata(BaseModel):
    sport_key: str
    last_fetch_at: datetime
    event_count: int = 0


class ImpliedProbabilities(BaseModel):
    """Market-implied probabilities with the bookmaker margin removed."""
    home: float
    away: float
    draw: Optional[float] = None
    bookmaker_margin: float


class MarketsResponse(BaseModel):
    sport_key: str
    source: str  # "cache" | "network" | "static"
    stale: bool
    refreshed: bool
    events: list[OddsSnapshot]
