"""Virtual wallet models: the singleton wallet, bets and the transaction ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

WALLET_ID = "wallet"


# ---------- Wallet ----------

class WalletResponse(BaseModel):
    balance: float
    total_deposited: float
    total_won: float
    total_lost: float
    pending_bets: float
    currency: str = "USD"
    updated_at: Optional[datetime] = None


class DepositRequest(BaseModel):
    amount: float = Field(allow_inf_nan=False)


# ---------- Wallet Transactions ----------

class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    BET_PLACED = "BET_PLACED"
    BET_WON = "BET_WON"
    BET_LOST = "BET_LOST"


class TransactionResponse(BaseModel):
    id: str
    type: TransactionType
    amount: float  # positive = credit, negative = debit
    balance_after: Optional[float] = None
    description: str
    bet_id: Optional[str] = None
    created_at: datetime


# ---------- Bets ----------

class BetStatus(str, Enum):
    PENDING = "PENDING"
    WON = "WON"
    LOST = "LOST"


class BetSelection(str, Enum):
    HOME = "HOME"
    AWAY = "AWAY"
    DRAW = "DRAW"


class BetCreate(BaseModel):
    """Request body for placing a bet on a cached event."""
    sport_key: str
    event_id: str
    selection: str  # HOME | AWAY | DRAW or a team name
    stake: float = Field(allow_inf_nan=False)
    odds: Optional[float] = Field(default=None, allow_inf_nan=False)  # defaults to the cached headline price


class ManualSettleRequest(BaseModel):
    won: bool


class BetResponse(BaseModel):
    id: str
    event_id: str
    sport_key: str
    match_name: str
    home_team: str
    away_team: str
    selection: BetSelection
    selected_team: str
    odds: float
    stake: float
    potential_payout: float
    status: BetStatus
    commence_time: datetime
    placed_at: datetime
    settled_at: Optional[datetime] = None
    actual_winner: Optional[str] = None
    final_score: Optional[str] = None


class BetStatistics(BaseModel):
    won_count: int = 0
    lost_count: int = 0
    pending_count: int = 0
    total_pending_stake: float = 0.0
    total_settled: int = Field(default=0)
    win_rate: float = 0.0
