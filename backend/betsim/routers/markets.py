"""Odds market endpoints: cache-first listing and explicit refresh."""

from fastapi import APIRouter, Depends, HTTPException, status

from betsim.container import Services, get_services
from betsim.models.odds import MarketsResponse
from betsim.services.market_cache_service import MarketsUnavailable

router = APIRouter(prefix="/api/markets", tags=["markets"])


@router.get("/{sport_key}", response_model=MarketsResponse)
async def get_markets(sport_key: str, services: Services = Depends(get_services)):
    """Cached markets for a sport; fetched from the odds feed when the cache is empty."""
    try:
        result = await services.markets.get_markets(sport_key)
    except MarketsUnavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No market data available for {sport_key}.",
        )
    return result.to_response()


@router.post("/{sport_key}/refresh", response_model=MarketsResponse)
async def refresh_markets(sport_key: str, services: Services = Depends(get_services)):
    """Force a refetch; falls back to cached or bundled data when the feed fails."""
    try:
        result = await services.markets.refresh_markets(sport_key)
    except MarketsUnavailable:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No market data available for {sport_key}.",
        )
    return result.to_response()
