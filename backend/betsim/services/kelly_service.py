"""Half-Kelly stake advice from the gap between AI and market probabilities."""

from __future__ import annotations

from typing import Optional

from betsim.models.analysis import KellyStakeResult, StakeAdvice
from betsim.models.odds import ImpliedProbabilities
from betsim.services.validation_service import validate_kelly_inputs

HALF_KELLY_MULTIPLIER = 0.5
MAX_STAKE_FRACTION = 0.10  # cap at 10% of bankroll
MIN_EDGE_THRESHOLD = 0.0


def implied_probabilities(
    home_odds: float, away_odds: float, draw_odds: Optional[float] = None,
) -> ImpliedProbabilities:
    """Margin-free implied probabilities for a head-to-head market."""
    raw_home = 1.0 / home_odds
    raw_away = 1.0 / away_odds
    raw_draw = 1.0 / draw_odds if draw_odds else None
    total = raw_home + raw_away + (raw_draw or 0.0)
    return ImpliedProbabilities(
        home=raw_home / total,
        away=raw_away / total,
        draw=(raw_draw / total) if raw_draw is not None else None,
        bookmaker_margin=total - 1.0,
    )


def _stake_units(edge: float, stake_fraction: float) -> int:
    if edge <= MIN_EDGE_THRESHOLD or stake_fraction <= 0:
        return 0
    for units, ceiling in ((1, 0.02), (2, 0.04), (3, 0.06), (4, 0.08)):
        if stake_fraction <= ceiling:
            return units
    return 5


def calculate_kelly(
    ai_probability: float, implied_probability: float, decimal_odds: float,
) -> KellyStakeResult:
    """f* = (b*p - q) / b, halved and clamped to [0, 10%]."""
    edge = ai_probability - implied_probability
    b = decimal_odds - 1.0
    p = ai_probability
    q = 1.0 - p
    kelly_fraction = (b * p - q) / b if b > 0 else 0.0
    half_kelly = HALF_KELLY_MULTIPLIER * kelly_fraction
    stake_fraction = min(max(half_kelly, 0.0), MAX_STAKE_FRACTION)
    return KellyStakeResult(
        edge=edge,
        kelly_fraction=kelly_fraction,
        half_kelly_fraction=half_kelly,
        recommended_stake_percent=stake_fraction * 100,
        stake_units=_stake_units(edge, stake_fraction),
    )


def calculate_validated_stake(
    ai_probability: float,
    implied: ImpliedProbabilities,
    decimal_odds: float,
    recommendation: str,
) -> StakeAdvice:
    """The only place a stake recommendation is produced."""
    if recommendation == "HOME":
        market_prob = implied.home
    elif recommendation == "AWAY":
        market_prob = implied.away
    elif recommendation == "DRAW":
        if implied.draw is None:
            return StakeAdvice(kind="no_value", reason="No draw odds")
        market_prob = implied.draw
    else:
        return StakeAdvice(kind="no_value", reason="No bet recommended")

    check = validate_kelly_inputs(ai_probability, market_prob, decimal_odds)
    if not check.valid:
        return StakeAdvice(kind="error", reason=check.reason)

    kelly = calculate_kelly(ai_probability, market_prob, decimal_odds)
    if kelly.edge <= 0:
        return StakeAdvice(kind="no_value", reason="No positive edge detected", edge=kelly.edge)

    return StakeAdvice(
        kind="recommended",
        edge=kelly.edge,
        stake_units=kelly.stake_units,
        stake_percent=kelly.recommended_stake_percent,
    )
