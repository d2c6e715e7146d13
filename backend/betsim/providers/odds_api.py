import logging
from typing import Any, Optional

import httpx

from betsim.config import settings
from betsim.providers.base import BaseOddsGateway, GatewayResult
from betsim.providers.http_client import (
    RETRYABLE_STATUSES,
    TRANSPORT_ERRORS,
    ResilientClient,
)

logger = logging.getLogger("betsim.odds_api")

class TheOddsAPIGateway(BaseOddsGateway):
    """TheOddsAPI v4 client returning tagged results instead of raising."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[ResilientClient] = None,
    ):
        self._api_key = api_key if api_key is not None else settings.ODDSAPIKEY
        self._base_url = (base_url or settings.THEODDSAPI_BASE_URL).rstrip("/")
        self._client = client or ResilientClient(
            "odds_api",
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_retries=settings.HTTP_MAX_RETRIES,
            base_delay=settings.HTTP_RETRY_BASE_DELAY_SECONDS,
        )
        self._api_usage: dict[str, Optional[int]] = {
            "requests_used": None,
            "requests_remaining": None,
        }

    async def get_odds(self, sport_key: str) -> GatewayResult[list[dict[str, Any]]]:
        return await self._get_list(
            f"/sports/{sport_key}/odds",
            {
                "regions": settings.ODDS_REGIONS,
                "markets": "h2h",
                "oddsFormat": "decimal",
            },
        )

    async def get_scores(
        self, sport_key: str, event_ids: list[str], days_from: int,
    ) -> GatewayResult[list[dict[str, Any]]]:
        params: dict[str, Any] = {"daysFrom": days_from}
        if event_ids:
            params["eventIds"] = ",".join(event_ids)
        return await self._get_list(f"/sports/{sport_key}/scores", params)

    async def _get_list(
        self, path: str, params: dict[str, Any],
    ) -> GatewayResult[list[dict[str, Any]]]:
        if not self._client.circuit.can_attempt():
            logger.warning("Circuit open for odds API, skipping %s", path)
            return GatewayResult.transient("circuit open")

        try:
            resp = await self._client.get(
                f"{self._base_url}{path}",
                params={"apiKey": self._api_key, **params},
            )
        except TRANSPORT_ERRORS as exc:
            self._client.circuit.record_failure()
            return GatewayResult.transient(f"{type(exc).__name__}: {exc}")

        self._track_usage_headers(resp)

        if resp.status_code in RETRYABLE_STATUSES:
            self._client.circuit.record_failure()
            return GatewayResult.transient(
                f"HTTP {resp.status_code}", status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            logger.error("TheOddsAPI rejected %s: HTTP %d", path, resp.status_code)
            return GatewayResult.permanent(
                f"HTTP {resp.status_code}", status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            logger.error("TheOddsAPI returned malformed JSON for %s: %s", path, exc)
            return GatewayResult.permanent("malformed JSON", status_code=resp.status_code)

        if not isinstance(payload, list) or not all(isinstance(e, dict) for e in payload):
            logger.error("TheOddsAPI returned unexpected payload shape for %s", path)
            return GatewayResult.permanent("unexpected payload", status_code=resp.status_code)

        self._client.circuit.record_success()
        return GatewayResult.success(payload, status_code=resp.status_code)

    def _track_usage_headers(self, resp: httpx.Response) -> None:
        """Extract and store API credit usage from response headers."""
        used = resp.headers.get("x-requests-used")
        remaining = resp.headers.get("x-requests-remaining")
        try:
            if used is not None:
                self._api_usage["requests_used"] = int(float(used))
            if remaining is not None:
                self._api_usage["requests_remaining"] = int(float(remaining))
        except ValueError:
            logger.debug("Unparseable usage headers: used=%s remaining=%s", used, remaining)

    @property
    def api_usage(self) -> dict:
        return dict(self._api_usage)

    @property
    def circuit_open(self) -> bool:
        # Half-open counts as closed so a caller can try the API again.
        return not self._client.circuit.can_attempt()

    async def aclose(self) -> None:
        await self._client.aclose()
