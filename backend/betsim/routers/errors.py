from fastapi import HTTPException, status

from betsim.services.ledger_repository import LedgerError, LedgerFailure

_STATUS_BY_FAILURE = {
    LedgerFailure.BET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LedgerFailure.ALREADY_SETTLED: status.HTTP_409_CONFLICT,
}


def ledger_http_error(exc: LedgerError) -> HTTPException:
    """400 with the failure reason; 404 for an unknown bet, 409 for a settle race."""
    return HTTPException(
        status_code=_STATUS_BY_FAILURE.get(exc.reason, status.HTTP_400_BAD_REQUEST),
        detail=exc.reason.value,
    )
