"""Gateway contract and the tagged result every gateway call returns.

Network and parse failures are values, not exceptions: the cache manager and
the settlement worker branch on ``GatewayResult.status`` instead of wrapping
each call in try/except.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class GatewayStatus(str, Enum):
    OK = "ok"
    TRANSIENT = "transient"  # timeout, connection error, 429/5xx, open circuit
    PERMANENT = "permanent"  # other non-2xx, malformed payload


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    status: GatewayStatus
    data: Optional[T] = None
    error: str = ""
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is GatewayStatus.OK

    @classmethod
    def success(cls, data: T, status_code: int = 200) -> "GatewayResult[T]":
        return cls(GatewayStatus.OK, data=data, status_code=status_code)

    @classmethod
    def transient(cls, error: str, status_code: Optional[int] = None) -> "GatewayResult[T]":
        return cls(GatewayStatus.TRANSIENT, error=error, status_code=status_code)

    @classmethod
    def permanent(cls, error: str, status_code: Optional[int] = None) -> "GatewayResult[T]":
        return cls(GatewayStatus.PERMANENT, error=error, status_code=status_code)


class BaseOddsGateway(ABC):
    """Remote odds/scores source."""

    @abstractmethod
    async def get_odds(self, sport_key: str) -> GatewayResult[list[dict[str, Any]]]:
        """Fetch upcoming h2h odds events for a sport (raw TheOddsAPI shape)."""
        ...

    @abstractmethod
    async def get_scores(
        self, sport_key: str, event_ids: list[str], days_from: int,
    ) -> GatewayResult[list[dict[str, Any]]]:
        """Fetch score records, optionally filtered to event ids.

        Each record carries at least ``id``, ``completed``, ``home_team``,
        ``away_team`` and ``scores`` (null until the match is reported).
        """
        ...

    @property
    def circuit_open(self) -> bool:
        """True while the gateway refuses to make network calls."""
        return False

    async def aclose(self) -> None:
        pass
