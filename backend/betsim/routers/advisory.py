"""AI advisory endpoints. Advice is informational and never settles a bet."""

from fastapi import APIRouter, Depends, HTTPException, status

from betsim.container import Services, get_services
from betsim.models.analysis import AdvisoryResponse, AIAnalysis
from betsim.services.advisory_service import InvalidAnalysis

router = APIRouter(prefix="/api/advisory", tags=["advisory"])


@router.put("/{event_id}", response_model=AdvisoryResponse)
async def store_analysis(
    event_id: str, body: AIAnalysis, services: Services = Depends(get_services),
):
    try:
        return await services.advisory.store_analysis(event_id, body)
    except InvalidAnalysis as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{event_id}", response_model=AdvisoryResponse)
async def get_advice(event_id: str, services: Services = Depends(get_services)):
    advice = await services.advisory.get_advice(event_id)
    if advice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No analysis for event.")
    return advice
