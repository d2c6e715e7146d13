"""
backend/betsim/services/bet_ledger_service.py

Purpose:
    Wallet and bet operations for the simulator: first-run wallet setup,
    deposits, bet placement (atomic with the stake debit), settlement
    (exactly once per bet) and ledger queries.

Dependencies:
    - betsim.services.ledger_repository
    - betsim.services.validation_service
    - betsim.workers.settlement_worker
"""

import logging
import math
from typing import Optional

from pymongo.errors import PyMongoError

from betsim.config import settings
from betsim.models.odds import OddsSnapshot
from betsim.models.wallet import (
    BetResponse,
    BetStatistics,
    BetStatus,
    TransactionResponse,
    TransactionType,
    WalletResponse,
)
from betsim.services.ledger_repository import LedgerError, LedgerFailure, LedgerRepository
from betsim.services.validation_service import normalize_selection
from betsim.utils import ensure_utc, round_money, utcnow

logger = logging.getLogger("betsim.bet_ledger_service")


def check_placement(wallet: Optional[dict], stake: float, odds: Optional[float]) -> Optional[LedgerFailure]:
    """Placement preconditions in order; the first failure wins."""
    if wallet is None:
        return LedgerFailure.WALLET_NOT_INITIALIZED
    if stake > wallet["balance"]:
        return LedgerFailure.INSUFFICIENT_BALANCE
    if not math.isfinite(stake) or stake <= 0:
        return LedgerFailure.INVALID_STAKE
    if odds is None or not math.isfinite(odds) or odds <= 1.0:
        return LedgerFailure.INVALID_ODDS
    return None


class BetLedgerService:
    def __init__(self, repository: Optional[LedgerRepository] = None, settlement=None):
        self._repository = repository or LedgerRepository()
        # SettlementScheduler; optional so the ledger can run without a job queue.
        self._settlement = settlement

    # ---------- Wallet ----------

    async def initialize_wallet(self, initial_balance: Optional[float] = None) -> dict:
        """Create the singleton wallet on first run; a no-op afterwards."""
        amount = settings.INITIAL_WALLET_BALANCE if initial_balance is None else initial_balance
        created = await self._repository.create_wallet(round_money(amount), settings.WALLET_CURRENCY)
        if created:
            logger.info("Wallet initialized with %.2f %s", amount, settings.WALLET_CURRENCY)
        return await self.get_wallet()

    async def get_wallet(self) -> dict:
        wallet = await self._repository.get_wallet()
        if wallet is None:
            raise LedgerError(LedgerFailure.WALLET_NOT_INITIALIZED)
        return wallet

    async def deposit(self, amount: float) -> dict:
        amount = round_money(amount)
        if not math.isfinite(amount) or amount <= 0:
            raise LedgerError(LedgerFailure.INVALID_AMOUNT, str(amount))
        wallet = await self._repository.deposit(amount)
        logger.info("Deposit %.2f, balance %.2f", amount, wallet["balance"])
        return wallet

    # ---------- Bets ----------

    async def place_bet(
        self,
        event: OddsSnapshot,
        selection: str,
        odds: Optional[float],
        stake: float,
    ) -> dict:
        """Place a PENDING bet and debit the stake in one transaction.

        ``selection`` may be HOME/AWAY/DRAW or one of the event's team names;
        it is stored canonically alongside the label the user picked. When
        ``odds`` is None the event's headline price for the selection is used.
        Afterwards the BET_PLACED record and the settlement job are written on
        a best-effort basis.
        """
        stake = round_money(stake)
        canonical = normalize_selection(selection, event.home_team, event.away_team)
        if odds is None and canonical is not None:
            odds = event.odds_for(canonical)

        wallet = await self._repository.get_wallet()
        failure = check_placement(wallet, stake, odds)
        if failure is None and canonical is None:
            failure = LedgerFailure.INVALID_SELECTION
        if failure is not None:
            logger.info("Bet rejected for %s: %s", event.event_id, failure.value)
            raise LedgerError(failure, event.event_id)

        if canonical == "HOME":
            selected_team = event.home_team
        elif canonical == "AWAY":
            selected_team = event.away_team
        else:
            selected_team = "Draw"

        now = utcnow()
        bet_doc = {
            "event_id": event.event_id,
            "sport_key": event.sport_key,
            "match_name": event.match_name,
            "home_team": event.home_team,
            "away_team": event.away_team,
            "selection": canonical,
            "selected_team": selected_team,
            "odds": float(odds),
            "stake": stake,
            "potential_payout": round_money(stake * odds),
            "status": BetStatus.PENDING.value,
            "commence_time": event.commence_time,
            "placed_at": now,
            "settled_at": None,
            "actual_winner": None,
            "final_score": None,
        }
        bet, wallet = await self._repository.place_bet(bet_doc)
        bet_id = str(bet["_id"])
        logger.info(
            "Bet %s placed: %s on %s @ %.2f, stake %.2f",
            bet_id, selected_team, event.match_name, odds, stake,
        )

        try:
            await self._repository.record_transaction(
                TransactionType.BET_PLACED,
                amount=-stake,
                balance_after=wallet["balance"],
                description=f"Bet on {selected_team} @ {odds:.2f}",
                bet_id=bet_id,
            )
        except PyMongoError:
            logger.warning("Failed to record BET_PLACED for bet %s", bet_id, exc_info=True)

        if self._settlement is not None:
            try:
                await self._settlement.schedule_for_bet(bet)
            except Exception:
                # resume_pending() re-queues it on the next startup.
                logger.error("Failed to schedule settlement for bet %s", bet_id, exc_info=True)

        return bet

    async def settle_bet(self, bet_id: str, won: bool) -> dict:
        """Resolve a PENDING bet by direct user action.

        Raises LedgerError(ALREADY_SETTLED) when the bet has left PENDING,
        e.g. when this call races the scheduled settlement job.
        """
        bet, wallet = await self._repository.apply_settlement(bet_id, won=won)
        logger.info(
            "Bet %s manually settled as %s, balance %.2f",
            bet_id, bet["status"], wallet["balance"],
        )
        return bet

    async def get_bet(self, bet_id: str) -> dict:
        bet = await self._repository.get_bet(bet_id)
        if bet is None:
            raise LedgerError(LedgerFailure.BET_NOT_FOUND, bet_id)
        return bet

    async def list_bets(self, status: Optional[BetStatus] = None, limit: int = 100) -> list[dict]:
        return await self._repository.list_bets(status, limit)

    async def list_transactions(self, limit: int = 50, skip: int = 0) -> list[dict]:
        return await self._repository.list_transactions(limit, skip)

    async def get_statistics(self) -> BetStatistics:
        won = await self._repository.count_bets(BetStatus.WON)
        lost = await self._repository.count_bets(BetStatus.LOST)
        pending = await self._repository.count_bets(BetStatus.PENDING)
        settled = won + lost
        return BetStatistics(
            won_count=won,
            lost_count=lost,
            pending_count=pending,
            total_pending_stake=round_money(await self._repository.pending_stake_total()),
            total_settled=settled,
            win_rate=won / settled if settled else 0.0,
        )


# ---------- Response mapping ----------

def to_wallet_response(wallet: dict) -> WalletResponse:
    return WalletResponse(
        balance=round_money(wallet["balance"]),
        total_deposited=round_money(wallet["total_deposited"]),
        total_won=round_money(wallet["total_won"]),
        total_lost=round_money(wallet["total_lost"]),
        pending_bets=round_money(wallet["pending_bets"]),
        currency=wallet.get("currency", "USD"),
        updated_at=wallet.get("updated_at"),
    )


def to_bet_response(bet: dict) -> BetResponse:
    return BetResponse(
        id=str(bet["_id"]),
        event_id=bet["event_id"],
        sport_key=bet["sport_key"],
        match_name=bet["match_name"],
        home_team=bet["home_team"],
        away_team=bet["away_team"],
        selection=bet["selection"],
        selected_team=bet["selected_team"],
        odds=bet["odds"],
        stake=bet["stake"],
        potential_payout=bet["potential_payout"],
        status=bet["status"],
        commence_time=ensure_utc(bet["commence_time"]),
        placed_at=ensure_utc(bet["placed_at"]),
        settled_at=ensure_utc(bet["settled_at"]) if bet.get("settled_at") else None,
        actual_winner=bet.get("actual_winner"),
        final_score=bet.get("final_score"),
    )


def to_transaction_response(tx: dict) -> TransactionResponse:
    return TransactionResponse(
        id=str(tx["_id"]),
        type=tx["type"],
        amount=tx["amount"],
        balance_after=tx.get("balance_after"),
        description=tx["description"],
        bet_id=tx.get("bet_id"),
        created_at=ensure_utc(tx["created_at"]),
    )
