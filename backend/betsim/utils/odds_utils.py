"""H2H price extraction from TheOddsAPI bookmaker markets."""

from __future__ import annotations

from typing import Any

_DRAW_NAMES = ("draw", "tie", "x")


def _to_float(value: Any) -> float | None:
    """Safe float conversion."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def h2h_prices(market: dict[str, Any], home_team: str, away_team: str) -> dict[str, float] | None:
    """Map an h2h market's outcomes to {"home", "away"[, "draw"]} by team name.

    Returns None unless both sides are priced.
    """
    if market.get("key") != "h2h" or "outcomes" not in market:
        return None

    res: dict[str, float] = {}
    for outcome in market["outcomes"] or []:
        if not isinstance(outcome, dict):
            continue
        name = str(outcome.get("name", ""))
        price = _to_float(outcome.get("price"))
        if price is None:
            continue
        if name == home_team:
            res["home"] = price
        elif name == away_team:
            res["away"] = price
        elif name.lower() in _DRAW_NAMES:
            res["draw"] = price

    return res if ("home" in res and "away" in res) else None
