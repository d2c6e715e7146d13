"""Bundled fallback markets served when neither cache nor network has data.

Events are emitted in TheOddsAPI's raw shape so they go through the same parser
and price checks as live data. Commence times are relative to the call time.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from betsim.utils import utcnow

# (event_id, sport_title, home, away, home_odds, draw_odds, away_odds, hours_from_now)
_STATIC_FIXTURES: dict[str, list[tuple]] = {
    "soccer_usa_mls": [
        ("mls_001", "MLS", "LA Galaxy", "LAFC", 2.30, 3.40, 2.85, 3),
        ("mls_002", "MLS", "Inter Miami", "Atlanta United", 1.75, 3.80, 4.20, 6),
        ("mls_003", "MLS", "Seattle Sounders", "Portland Timbers", 2.10, 3.50, 3.20, 26),
    ],
    "americanfootball_nfl": [
        ("nfl_001", "NFL", "Kansas City Chiefs", "Buffalo Bills", 1.65, None, 2.25, 48),
        ("nfl_002", "NFL", "San Francisco 49ers", "Dallas Cowboys", 1.55, None, 2.45, 72),
    ],
    "basketball_nba": [
        ("nba_001", "NBA", "LA Lakers", "Golden State Warriors", 1.90, None, 1.90, 5),
        ("nba_002", "NBA", "Boston Celtics", "Milwaukee Bucks", 1.75, None, 2.10, 8),
    ],
    "soccer_epl": [
        ("epl_001", "Premier League", "Manchester United", "Liverpool", 2.45, 3.40, 2.90, 3),
        ("epl_002", "Premier League", "Arsenal", "Chelsea", 1.95, 3.60, 3.80, 6),
        ("epl_003", "Premier League", "Manchester City", "Tottenham", 1.35, 5.00, 8.50, 28),
    ],
}


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def static_events(sport_key: str, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Return the bundled raw events for a sport (empty for unknown sports)."""
    now = now or utcnow()
    events = []
    for event_id, title, home, away, home_odds, draw_odds, away_odds, hours in _STATIC_FIXTURES.get(sport_key, []):
        outcomes = [
            {"name": home, "price": home_odds},
            {"name": away, "price": away_odds},
        ]
        if draw_odds is not None:
            outcomes.append({"name": "Draw", "price": draw_odds})
        events.append({
            "id": event_id,
            "sport_key": sport_key,
            "sport_title": title,
            "commence_time": _iso(now + timedelta(hours=hours)),
            "home_team": home,
            "away_team": away,
            "bookmakers": [{
                "key": "fanduel",
                "title": "FanDuel",
                "last_update": _iso(now),
                "markets": [{"key": "h2h", "last_update": _iso(now), "outcomes": outcomes}],
            }],
        })
    return events
