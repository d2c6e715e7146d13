import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("betsim.http_client")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)

MAX_BACKOFF_SECONDS = 60.0


class CircuitBreaker:
    """Counts consecutive upstream failures and short-circuits calls once tripped.

    After ``recovery_timeout`` seconds without a new failure the breaker lets a
    trial request through; a success closes it again, a failure keeps it open.
    """

    def __init__(self, failure_threshold: int = 3, recovery_timeout: float = 300.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def record_success(self) -> None:
        if self.is_open:
            logger.info("Circuit breaker closed after a successful request")
        self.failure_count = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.failure_count < self.failure_threshold:
            return
        if not self.is_open:
            logger.warning("Circuit breaker OPEN after %d failures", self.failure_count)
        self.opened_at = time.monotonic()

    def can_attempt(self) -> bool:
        if self.opened_at is None:
            return True
        return time.monotonic() - self.opened_at > self.recovery_timeout


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Server-requested wait from Retry-After style headers, if numeric."""
    for header in ("retry-after", "x-ratelimit-retry-after"):
        raw = response.headers.get(header)
        if raw is None:
            continue
        try:
            return float(raw)
        except ValueError:
            continue
    return None


def safe_url(url: str) -> str:
    """Drop the query string (the odds API key travels there) before logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient with a bounded timeout, few retries and a circuit breaker.

    Callers (cache refresh, settlement) have their own fallback or reschedule
    path, so by default a request is retried once.
    """

    def __init__(
        self,
        name: str,
        timeout: float = 20.0,
        max_retries: int = 1,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._name = name
        self._max_retries = max_retries
        self._base_delay = base_delay
        self.circuit = CircuitBreaker()

    def _backoff(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        delay = retry_after_seconds(response) if response is not None else None
        if delay is None:
            delay = self._base_delay * (2 ** attempt)
        return min(delay, MAX_BACKOFF_SECONDS)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, retrying timeouts, connection drops and 429/5xx.

        When retries run out the last retryable response is returned as is.
        If no response arrived at all, the last transport error is re-raised.
        """
        attempts = self._max_retries + 1
        last_exc: Optional[Exception] = None
        last_resp: Optional[httpx.Response] = None

        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self._backoff(attempt - 1, last_resp))
            try:
                resp = await self._client.request(method, url, **kwargs)
            except TRANSPORT_ERRORS as exc:
                last_exc = exc
                logger.warning(
                    "[%s] %s %s failed (attempt %d/%d): %r",
                    self._name, method, safe_url(url), attempt + 1, attempts, exc,
                )
                continue

            if resp.status_code not in RETRYABLE_STATUSES:
                return resp
            last_resp = resp
            logger.warning(
                "[%s] %s %s returned %d (attempt %d/%d)",
                self._name, method, safe_url(url), resp.status_code, attempt + 1, attempts,
            )

        if last_resp is not None:
            logger.error(
                "[%s] giving up on %s %s after %d attempts (last status %d)",
                self._name, method, safe_url(url), attempts, last_resp.status_code,
            )
            return last_resp

        logger.error(
            "[%s] giving up on %s %s after %d attempts: %r",
            self._name, method, safe_url(url), attempts, last_exc,
        )
        raise last_exc  # type: ignore[misc]

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
