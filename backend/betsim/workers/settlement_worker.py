"""
backend/betsim/workers/settlement_worker.py

Purpose:
    Per-bet settlement loop. Each pending bet owns one delayed job keyed
    ``settlement_<bet_id>``. A run loads the bet, fetches final scores and
    either settles the bet or puts itself back on the queue. Bets are
    resolved from authoritative scores only.

    evaluate() is the decision step and has no queue side effects.
    run() wraps it with the retry policy and re-enqueues as needed.

Dependencies:
    - betsim.providers.base
    - betsim.services.ledger_repository
    - betsim.services.validation_service
    - betsim.workers.job_queue
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from betsim.config import settings
from betsim.models.wallet import BetStatus
from betsim.providers.base import BaseOddsGateway
from betsim.services.ledger_repository import LedgerError, LedgerFailure, LedgerRepository
from betsim.services.validation_service import (
    SettlementState,
    SettlementValidation,
    extract_scores,
    normalize_selection,
    validate_settlement_data,
)
from betsim.utils import ensure_utc, utcnow
from betsim.workers.job_queue import DurableJobQueue

logger = logging.getLogger("betsim.settlement_worker")

JOB_FUNC_REF = "betsim.workers.settlement_worker:run_settlement_job"
NETWORK_CONSTRAINTS = {"requires_network": True}


class SettlementOutcome(str, Enum):
    SETTLED = "settled"
    RESCHEDULED = "rescheduled"
    RETRY = "retry"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class SettlementTask:
    bet_id: str
    event_id: str
    sport_key: str
    attempt: int = 0

    @property
    def key(self) -> str:
        return settlement_key(self.bet_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "bet_id": self.bet_id,
            "event_id": self.event_id,
            "sport_key": self.sport_key,
            "attempt": self.attempt,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SettlementTask":
        return cls(
            bet_id=str(payload["bet_id"]),
            event_id=str(payload["event_id"]),
            sport_key=str(payload["sport_key"]),
            attempt=int(payload.get("attempt", 0)),
        )


@dataclass(frozen=True)
class SettlementRun:
    outcome: SettlementOutcome
    reason: str = ""
    delay: Optional[timedelta] = None
    validation: Optional[SettlementValidation] = None


def settlement_key(bet_id: str) -> str:
    return f"settlement_{bet_id}"


def initial_delay(commence_time: datetime, now: datetime, match_buffer: timedelta) -> timedelta:
    """Time until the assumed end of the match; never negative."""
    return max(timedelta(0), ensure_utc(commence_time) + match_buffer - ensure_utc(now))


def retry_delay(attempt: int, base_seconds: int) -> timedelta:
    """Exponential backoff for crashed runs: base, 2*base, 4*base, ..."""
    return timedelta(seconds=base_seconds * (2 ** attempt))


class SettlementScheduler:
    def __init__(
        self,
        repository: LedgerRepository,
        gateway: BaseOddsGateway,
        queue: DurableJobQueue,
        *,
        clock: Callable[[], datetime] = utcnow,
        match_buffer: Optional[timedelta] = None,
        reschedule_delay: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[int] = None,
        scores_days_from: Optional[int] = None,
    ):
        self._repository = repository
        self._gateway = gateway
        self._queue = queue
        self._clock = clock
        self.match_buffer = match_buffer or timedelta(hours=settings.SETTLEMENT_MATCH_BUFFER_HOURS)
        self.reschedule_delay = reschedule_delay or timedelta(
            minutes=settings.SETTLEMENT_RESCHEDULE_MINUTES,
        )
        self.max_attempts = max_attempts if max_attempts is not None else settings.SETTLEMENT_MAX_ATTEMPTS
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None
            else settings.SETTLEMENT_RETRY_BASE_SECONDS
        )
        self.scores_days_from = scores_days_from or settings.SETTLEMENT_SCORES_DAYS_FROM

    # ---------- Scheduling ----------

    async def schedule_for_bet(self, bet: dict) -> timedelta:
        """Queue the first settlement check for a freshly placed bet."""
        task = SettlementTask(
            bet_id=str(bet["_id"]),
            event_id=bet["event_id"],
            sport_key=bet["sport_key"],
        )
        delay = initial_delay(bet["commence_time"], self._clock(), self.match_buffer)
        await self._queue.schedule(task.key, delay, task.to_payload(), NETWORK_CONSTRAINTS)
        logger.info(
            "Scheduled settlement for bet %s in %d minutes",
            task.bet_id, int(delay.total_seconds() // 60),
        )
        return delay

    async def resume_pending(self) -> int:
        """Re-queue every PENDING bet; replace-on-key keeps this idempotent."""
        pending = await self._repository.list_bets(BetStatus.PENDING, limit=5000)
        for bet in pending:
            await self.schedule_for_bet(bet)
        if pending:
            logger.info("Resumed settlement for %d pending bets", len(pending))
        return len(pending)

    # ---------- Execution ----------

    async def run(
        self, task: SettlementTask, constraints: Optional[dict[str, Any]] = None,
    ) -> SettlementRun:
        """Execute one settlement attempt and enqueue its follow-up, if any."""
        if (constraints or {}).get("requires_network") and self._gateway.circuit_open:
            result = self._reschedule("odds API unreachable (circuit open)")
        else:
            try:
                result = await self.evaluate(task)
            except Exception as e:
                logger.error(
                    "Settlement run for bet %s crashed (attempt %d): %s",
                    task.bet_id, task.attempt + 1, e, exc_info=True,
                )
                if task.attempt < self.max_attempts:
                    result = SettlementRun(
                        SettlementOutcome.RETRY,
                        reason=str(e),
                        delay=retry_delay(task.attempt, self.retry_base_seconds),
                    )
                else:
                    result = self._reschedule(f"retries exhausted: {e}")

        if result.outcome is SettlementOutcome.RETRY:
            next_task = replace(task, attempt=task.attempt + 1)
            await self._queue.schedule(next_task.key, result.delay, next_task.to_payload(), NETWORK_CONSTRAINTS)
        elif result.outcome is SettlementOutcome.RESCHEDULED:
            next_task = replace(task, attempt=0)
            await self._queue.schedule(next_task.key, result.delay, next_task.to_payload(), NETWORK_CONSTRAINTS)
            logger.info(
                "Rescheduled settlement for bet %s in %d minutes: %s",
                task.bet_id, int(result.delay.total_seconds() // 60), result.reason,
            )
        return result

    async def evaluate(self, task: SettlementTask) -> SettlementRun:
        """Decide what this run does. Exceptions propagate to run()."""
        bet = await self._repository.get_bet(task.bet_id)
        if bet is None:
            logger.error("Bet %s not found, abandoning settlement task", task.bet_id)
            return SettlementRun(SettlementOutcome.ABANDONED, reason="bet not found")

        if bet["status"] != BetStatus.PENDING.value:
            logger.debug("Bet %s already settled: %s", task.bet_id, bet["status"])
            return SettlementRun(SettlementOutcome.SETTLED, reason="already settled")

        response = await self._gateway.get_scores(
            task.sport_key, [task.event_id], self.scores_days_from,
        )
        if not response.ok:
            logger.warning(
                "Scores request failed for event %s (%s): %s",
                task.event_id, response.status.value, response.error,
            )
            return self._reschedule(f"scores unavailable: {response.error}")

        records = response.data or []
        if not records:
            logger.debug("No score data for event %s", task.event_id)
            return self._reschedule("no score data")

        record = next((r for r in records if r.get("id") == task.event_id), None)
        if record is None:
            logger.debug("Event %s not in scores response", task.event_id)
            return self._reschedule("event not in scores")

        completed, home_score, away_score = extract_scores(record)
        selection = normalize_selection(
            bet["selection"], bet["home_team"], bet["away_team"],
        ) or bet["selection"]
        validation = validate_settlement_data(completed, home_score, away_score, selection)

        if validation.state is SettlementState.NOT_READY:
            logger.debug("Bet %s not ready: %s", task.bet_id, validation.reason)
            return self._reschedule(validation.reason, validation)

        if validation.state is SettlementState.INVALID:
            logger.warning(
                "Anomalous score data for event %s (bet %s): %s",
                task.event_id, task.bet_id, validation.reason,
            )
            return self._reschedule(validation.reason, validation)

        try:
            await self._repository.apply_settlement(
                task.bet_id,
                won=validation.user_won,
                actual_winner=validation.actual_winner,
                final_score=validation.final_score,
            )
        except LedgerError as e:
            if e.reason is LedgerFailure.ALREADY_SETTLED:
                logger.info("Bet %s was settled concurrently", task.bet_id)
                return SettlementRun(SettlementOutcome.SETTLED, reason="already settled")
            if e.reason is LedgerFailure.BET_NOT_FOUND:
                logger.error("Bet %s vanished during settlement", task.bet_id)
                return SettlementRun(SettlementOutcome.ABANDONED, reason="bet not found")
            raise

        logger.info(
            "Bet %s %s: %s %s %s (winner %s, selection %s)",
            task.bet_id,
            "WON" if validation.user_won else "LOST",
            bet["home_team"], validation.final_score, bet["away_team"],
            validation.actual_winner, selection,
        )
        return SettlementRun(SettlementOutcome.SETTLED, validation=validation)

    def _reschedule(
        self, reason: str, validation: Optional[SettlementValidation] = None,
    ) -> SettlementRun:
        return SettlementRun(
            SettlementOutcome.RESCHEDULED,
            reason=reason,
            delay=self.reschedule_delay,
            validation=validation,
        )


# Set at application startup; persistent jobs resolve to this function by name.
_scheduler: Optional[SettlementScheduler] = None


def configure(scheduler: Optional[SettlementScheduler]) -> None:
    global _scheduler
    _scheduler = scheduler


async def run_settlement_job(
    payload: dict[str, Any], constraints: Optional[dict[str, Any]] = None,
) -> None:
    """APScheduler entry point for ``settlement_<bet_id>`` jobs."""
    if _scheduler is None:
        raise RuntimeError("Settlement scheduler not configured")
    await _scheduler.run(SettlementTask.from_payload(payload), constraints)
