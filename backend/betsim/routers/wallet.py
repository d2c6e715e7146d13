"""Wallet endpoints: balance, virtual deposits and the transaction log."""

from fastapi import APIRouter, Depends, Query

from betsim.container import Services, get_services
from betsim.models.wallet import DepositRequest, TransactionResponse, WalletResponse
from betsim.routers.errors import ledger_http_error
from betsim.services.bet_ledger_service import to_transaction_response, to_wallet_response
from betsim.services.ledger_repository import LedgerError

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(services: Services = Depends(get_services)):
    try:
        wallet = await services.ledger.get_wallet()
    except LedgerError as e:
        raise ledger_http_error(e)
    return to_wallet_response(wallet)


@router.post("/deposit", response_model=WalletResponse)
async def deposit(body: DepositRequest, services: Services = Depends(get_services)):
    """Add virtual funds to the wallet."""
    try:
        wallet = await services.ledger.deposit(body.amount)
    except LedgerError as e:
        raise ledger_http_error(e)
    return to_wallet_response(wallet)


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Transaction history, newest first."""
    txs = await services.ledger.list_transactions(limit, skip)
    return [to_transaction_response(tx) for tx in txs]
