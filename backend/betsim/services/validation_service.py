"""
backend/betsim/services/validation_service.py

Purpose:
    Pure validation helpers shared by the cache, ledger, advisory and
    settlement paths. Market prices come from the odds feed only, AI output is
    bounded before it reaches stake sizing, and settlement is decided from
    final scores only. validate_settlement_data is the one place that decides
    from scores whether an outcome is settled.

Dependencies:
    - dataclasses
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from betsim.models.analysis import AIAnalysis

logger = logging.getLogger("betsim.validation")

MAX_DECIMAL_ODDS = 100.0
VALID_RECOMMENDATIONS = ("HOME", "AWAY", "DRAW", "NO_BET")
_DRAW_LABELS = ("draw", "x", "tie")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str = ""


_VALID = ValidationResult(valid=True)


def _invalid(reason: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason)


# ---------- Market prices ----------

def validate_market_prices(
    home_odds: float, away_odds: float, draw_odds: Optional[float] = None,
) -> ValidationResult:
    """Reject price sets that cannot come from a real bookmaker.

    Every price must lie in (1.0, 100.0] and the implied probabilities must sum
    to at least 100 %: a book always keeps a positive margin, so a sum below
    1.0 means corrupt data.
    """
    labelled = [("Home", home_odds), ("Away", away_odds)]
    if draw_odds is not None:
        labelled.append(("Draw", draw_odds))

    for label, price in labelled:
        if price is None or price <= 1.0 or price > MAX_DECIMAL_ODDS:
            return _invalid(f"{label} odds out of valid range: {price}")

    total_implied = sum(1.0 / price for _, price in labelled)
    if total_implied < 1.0:
        return _invalid(
            f"Implied probabilities sum to less than 100%: {total_implied * 100:.2f}%"
        )
    return _VALID


# ---------- AI advisory ----------

def validate_ai_analysis(analysis: AIAnalysis) -> ValidationResult:
    """Bounds-check advisory output before it can influence stake sizing."""
    prob = analysis.probability
    if prob is None or not 0.0 <= prob <= 1.0:
        return _invalid(f"Invalid projected probability: {prob}")
    if not 0.0 <= analysis.confidence <= 1.0:
        return _invalid(f"Invalid confidence score: {analysis.confidence}")
    if analysis.recommendation not in VALID_RECOMMENDATIONS:
        return _invalid(f"Invalid recommendation: {analysis.recommendation}")
    return _VALID


def validate_kelly_inputs(
    ai_probability: float, market_implied_probability: float, decimal_odds: float,
) -> ValidationResult:
    if not 0.0 <= ai_probability <= 1.0:
        return _invalid(f"AI probability out of range: {ai_probability}")
    if not 0.0 <= market_implied_probability <= 1.0:
        return _invalid(f"Market implied probability out of range: {market_implied_probability}")
    if decimal_odds <= 1.0:
        return _invalid(f"Invalid decimal odds: {decimal_odds}")

    logger.debug(
        "Kelly inputs: ai=%.1f%% market=%.1f%% edge=%.1f%%",
        ai_probability * 100,
        market_implied_probability * 100,
        (ai_probability - market_implied_probability) * 100,
    )
    return _VALID


# ---------- Settlement ----------

class SettlementState(str, Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    INVALID = "invalid"


@dataclass(frozen=True)
class SettlementValidation:
    state: SettlementState
    reason: str = ""
    actual_winner: Optional[str] = None
    final_score: Optional[str] = None
    user_won: bool = False

    @property
    def ready(self) -> bool:
        return self.state is SettlementState.READY


def validate_settlement_data(
    match_completed: bool,
    home_score: Optional[int],
    away_score: Optional[int],
    user_selection: str,
) -> SettlementValidation:
    """Decide a bet strictly from final scores.

    The selection is compared case-insensitively against HOME/AWAY/DRAW only.
    A raw team name never matches here; callers holding team names run them
    through normalize_selection first.
    """
    if not match_completed:
        return SettlementValidation(SettlementState.NOT_READY, "Match not yet completed")

    if home_score is None or away_score is None:
        return SettlementValidation(SettlementState.NOT_READY, "Scores not available")

    if home_score < 0 or away_score < 0:
        return SettlementValidation(
            SettlementState.INVALID, f"Invalid scores: {home_score} - {away_score}",
        )

    if home_score > away_score:
        actual_winner = "HOME"
    elif away_score > home_score:
        actual_winner = "AWAY"
    else:
        actual_winner = "DRAW"

    selection = (user_selection or "").upper()
    user_won = selection == actual_winner

    return SettlementValidation(
        SettlementState.READY,
        actual_winner=actual_winner,
        final_score=f"{home_score} - {away_score}",
        user_won=user_won,
    )


def normalize_selection(selection: str, home_team: str, away_team: str) -> Optional[str]:
    """Map a selection label to HOME/AWAY/DRAW, or None if it names neither side.

    Accepts the canonical literals in any case, the bet's own team names
    (case-insensitive, surrounding whitespace ignored) and common draw labels.
    """
    label = (selection or "").strip()
    upper = label.upper()
    if upper in ("HOME", "AWAY", "DRAW"):
        return upper
    lowered = label.lower()
    if lowered in _DRAW_LABELS:
        return "DRAW"
    if home_team and lowered == home_team.strip().lower():
        return "HOME"
    if away_team and lowered == away_team.strip().lower():
        return "AWAY"
    return None


def _parse_score(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def extract_scores(record: dict[str, Any]) -> tuple[bool, Optional[int], Optional[int]]:
    """Pull (completed, home_score, away_score) out of a scores-endpoint record.

    Scores are matched to sides by team name. Missing or unparseable scores
    come back as None so the settlement check reports NOT_READY.
    """
    completed = bool(record.get("completed"))
    home_team = record.get("home_team")
    away_team = record.get("away_team")
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    for entry in record.get("scores") or []:
        if not isinstance(entry, dict):
            continue
        if entry.get("name") == home_team:
            home_score = _parse_score(entry.get("score"))
        elif entry.get("name") == away_team:
            away_score = _parse_score(entry.get("score"))
    return completed, home_score, away_score
