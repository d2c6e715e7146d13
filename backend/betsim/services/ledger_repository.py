"""
backend/betsim/services/ledger_repository.py

Purpose:
    Persistence for the singleton wallet, bets and the append-only transaction
    log. Every read-modify-write on the wallet or a bet runs inside a MongoDB
    multi-document transaction; balance guards are expressed in the update
    filter so no external locks are needed.

Dependencies:
    - betsim.database
    - pymongo
    - bson
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import betsim.database as _db
from betsim.models.wallet import WALLET_ID, BetStatus, TransactionType
from betsim.utils import round_money, utcnow

_MONEY_FIELDS = ("balance", "total_deposited", "total_won", "total_lost", "pending_bets")


class LedgerFailure(str, Enum):
    WALLET_NOT_INITIALIZED = "wallet not initialized"
    INSUFFICIENT_BALANCE = "insufficient balance"
    INVALID_STAKE = "invalid stake"
    INVALID_ODDS = "invalid odds"
    INVALID_SELECTION = "invalid selection"
    INVALID_AMOUNT = "invalid amount"
    EVENT_NOT_FOUND = "event not found"
    BET_NOT_FOUND = "bet not found"
    ALREADY_SETTLED = "already settled"


class LedgerError(Exception):
    """A ledger invariant rejected the operation; nothing was written."""

    def __init__(self, reason: LedgerFailure, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


def _object_id(bet_id: str) -> ObjectId:
    try:
        return ObjectId(bet_id)
    except (InvalidId, TypeError):
        raise LedgerError(LedgerFailure.BET_NOT_FOUND, str(bet_id))


async def _snap_to_cents(wallet: dict, session) -> dict:
    """Write back wallet totals rounded to cents after float $inc arithmetic."""
    drift = {
        field: round_money(wallet[field])
        for field in _MONEY_FIELDS
        if field in wallet and round_money(wallet[field]) != wallet[field]
    }
    if not drift:
        return wallet
    await _db.db.wallets.update_one({"_id": WALLET_ID}, {"$set": drift}, session=session)
    return {**wallet, **drift}


class LedgerRepository:
    # ---------- Wallet ----------

    async def get_wallet(self) -> Optional[dict]:
        return await _db.db.wallets.find_one({"_id": WALLET_ID})

    async def create_wallet(self, initial_balance: float, currency: str) -> bool:
        """First-run wallet creation. Returns False if the wallet already exists."""
        now = utcnow()
        try:
            async with await _db.client.start_session() as session:
                async with session.start_transaction():
                    await _db.db.wallets.insert_one(
                        {
                            "_id": WALLET_ID,
                            "balance": float(initial_balance),
                            "total_deposited": float(initial_balance),
                            "total_won": 0.0,
                            "total_lost": 0.0,
                            "pending_bets": 0.0,
                            "currency": currency,
                            "created_at": now,
                            "updated_at": now,
                        },
                        session=session,
                    )
                    await self.record_transaction(
                        TransactionType.DEPOSIT,
                        amount=float(initial_balance),
                        balance_after=float(initial_balance),
                        description="Initial virtual balance",
                        session=session,
                    )
        except DuplicateKeyError:
            return False
        return True

    async def deposit(self, amount: float) -> dict:
        async with await _db.client.start_session() as session:
            async with session.start_transaction():
                wallet = await _db.db.wallets.find_one_and_update(
                    {"_id": WALLET_ID},
                    {
                        "$inc": {"balance": amount, "total_deposited": amount},
                        "$set": {"updated_at": utcnow()},
                    },
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if wallet is None:
                    raise LedgerError(LedgerFailure.WALLET_NOT_INITIALIZED)
                wallet = await _snap_to_cents(wallet, session)
                await self.record_transaction(
                    TransactionType.DEPOSIT,
                    amount=amount,
                    balance_after=wallet["balance"],
                    description="Virtual deposit",
                    session=session,
                )
        return wallet

    # ---------- Bets ----------

    async def place_bet(self, bet_doc: dict[str, Any]) -> tuple[dict, dict]:
        """Insert a PENDING bet and debit its stake in one transaction.

        The wallet update only matches while ``balance >= stake``; if it does
        not match, the transaction aborts and the bet insert is rolled back.
        Returns (bet, wallet_after).
        """
        stake = bet_doc["stake"]
        async with await _db.client.start_session() as session:
            async with session.start_transaction():
                await _db.db.bets.insert_one(bet_doc, session=session)
                wallet = await _db.db.wallets.find_one_and_update(
                    {"_id": WALLET_ID, "balance": {"$gte": stake}},
                    {
                        "$inc": {"balance": -stake, "pending_bets": stake},
                        "$set": {"updated_at": utcnow()},
                    },
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if wallet is None:
                    exists = await _db.db.wallets.find_one({"_id": WALLET_ID}, session=session)
                    raise LedgerError(
                        LedgerFailure.INSUFFICIENT_BALANCE
                        if exists else LedgerFailure.WALLET_NOT_INITIALIZED
                    )
                wallet = await _snap_to_cents(wallet, session)
        return bet_doc, wallet

    async def apply_settlement(
        self,
        bet_id: str,
        won: bool,
        actual_winner: Optional[str] = None,
        final_score: Optional[str] = None,
    ) -> tuple[dict, dict]:
        """Move a PENDING bet to WON/LOST and book the wallet effects atomically.

        The status filter makes this a compare-and-set: a bet that is no
        longer PENDING is rejected with ALREADY_SETTLED and nothing changes.
        Returns (bet_after, wallet_after).
        """
        oid = _object_id(bet_id)
        now = utcnow()
        new_status = BetStatus.WON if won else BetStatus.LOST

        async with await _db.client.start_session() as session:
            async with session.start_transaction():
                bet = await _db.db.bets.find_one_and_update(
                    {"_id": oid, "status": BetStatus.PENDING.value},
                    {"$set": {
                        "status": new_status.value,
                        "settled_at": now,
                        "actual_winner": actual_winner,
                        "final_score": final_score,
                    }},
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if bet is None:
                    existing = await _db.db.bets.find_one({"_id": oid}, session=session)
                    raise LedgerError(
                        LedgerFailure.ALREADY_SETTLED if existing else LedgerFailure.BET_NOT_FOUND,
                        bet_id,
                    )

                stake = bet["stake"]
                payout = bet["potential_payout"]
                inc: dict[str, float] = {"pending_bets": -stake}
                if won:
                    inc["balance"] = payout
                    inc["total_won"] = payout
                else:
                    inc["total_lost"] = stake

                wallet = await _db.db.wallets.find_one_and_update(
                    {"_id": WALLET_ID},
                    {"$inc": inc, "$set": {"updated_at": now}},
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if wallet is None:
                    raise LedgerError(LedgerFailure.WALLET_NOT_INITIALIZED)
                wallet = await _snap_to_cents(wallet, session)

                if won:
                    description = f"Won bet: {bet['match_name']}"
                else:
                    description = f"Lost bet: {bet['match_name']}"
                if final_score:
                    description += f" ({final_score})"
                # Loss amount is 0: the stake already left the balance at placement.
                await self.record_transaction(
                    TransactionType.BET_WON if won else TransactionType.BET_LOST,
                    amount=payout if won else 0.0,
                    balance_after=wallet["balance"],
                    description=description,
                    bet_id=bet_id,
                    session=session,
                )
        return bet, wallet

    async def get_bet(self, bet_id: str) -> Optional[dict]:
        try:
            oid = ObjectId(bet_id)
        except (InvalidId, TypeError):
            return None
        return await _db.db.bets.find_one({"_id": oid})

    async def list_bets(self, status: Optional[BetStatus] = None, limit: int = 100) -> list[dict]:
        query = {"status": status.value} if status else {}
        return await _db.db.bets.find(query).sort("placed_at", -1).to_list(length=limit)

    async def count_bets(self, status: BetStatus) -> int:
        return await _db.db.bets.count_documents({"status": status.value})

    async def pending_stake_total(self) -> float:
        docs = await _db.db.bets.find(
            {"status": BetStatus.PENDING.value}, {"stake": 1},
        ).to_list(length=None)
        return sum(d["stake"] for d in docs)

    # ---------- Transactions ----------

    async def record_transaction(
        self,
        tx_type: TransactionType,
        amount: float,
        balance_after: Optional[float],
        description: str,
        bet_id: Optional[str] = None,
        session=None,
    ) -> None:
        """Insert an immutable transaction record."""
        await _db.db.wallet_transactions.insert_one(
            {
                "type": tx_type.value,
                "amount": amount,
                "balance_after": balance_after,
                "description": description,
                "bet_id": bet_id,
                "created_at": utcnow(),
            },
            session=session,
        )

    async def list_transactions(self, limit: int = 50, skip: int = 0) -> list[dict]:
        return await _db.db.wallet_transactions.find({}).sort(
            "created_at", -1,
        ).skip(skip).limit(limit).to_list(length=limit)
