"""Bet endpoints: placement against cached markets, history and manual settlement."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from betsim.container import Services, get_services
from betsim.models.wallet import (
    BetCreate,
    BetResponse,
    BetStatistics,
    BetStatus,
    ManualSettleRequest,
)
from betsim.routers.errors import ledger_http_error
from betsim.services.bet_ledger_service import to_bet_response
from betsim.services.ledger_repository import LedgerError, LedgerFailure

router = APIRouter(prefix="/api/bets", tags=["bets"])


@router.post("", response_model=BetResponse, status_code=status.HTTP_201_CREATED)
async def place_bet(body: BetCreate, services: Services = Depends(get_services)):
    """Place a bet on a cached event; the stake is debited immediately."""
    event = await services.markets.get_event(body.event_id)
    if event is None or event.sport_key != body.sport_key:
        raise ledger_http_error(LedgerError(LedgerFailure.EVENT_NOT_FOUND, body.event_id))
    try:
        bet = await services.ledger.place_bet(event, body.selection, body.odds, body.stake)
    except LedgerError as e:
        raise ledger_http_error(e)
    return to_bet_response(bet)


@router.get("", response_model=list[BetResponse])
async def list_bets(
    bet_status: Optional[BetStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    services: Services = Depends(get_services),
):
    bets = await services.ledger.list_bets(bet_status, limit)
    return [to_bet_response(b) for b in bets]


@router.get("/stats", response_model=BetStatistics)
async def bet_statistics(services: Services = Depends(get_services)):
    return await services.ledger.get_statistics()


@router.get("/{bet_id}", response_model=BetResponse)
async def get_bet(bet_id: str, services: Services = Depends(get_services)):
    try:
        bet = await services.ledger.get_bet(bet_id)
    except LedgerError as e:
        raise ledger_http_error(e)
    return to_bet_response(bet)


@router.post("/{bet_id}/settle", response_model=BetResponse)
async def settle_bet(
    bet_id: str, body: ManualSettleRequest, services: Services = Depends(get_services),
):
    """Resolve a pending bet by hand. 409 if it has already been settled."""
    try:
        bet = await services.ledger.settle_bet(bet_id, body.won)
    except LedgerError as e:
        raise ledger_http_error(e)
    return to_bet_response(bet)
