"""
backend/betsim/container.py

Purpose:
    Wires gateway, repositories and services into one Services bundle.
    The app lifespan builds it once and routers reach it via app.state.

Dependencies:
    - betsim.providers.odds_api
    - betsim.services
    - betsim.workers
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from fastapi import Request

from betsim.providers.base import BaseOddsGateway
from betsim.providers.odds_api import TheOddsAPIGateway
from betsim.services.advisory_service import AdvisoryService
from betsim.services.bet_ledger_service import BetLedgerService
from betsim.services.ledger_repository import LedgerRepository
from betsim.services.market_cache_service import MarketCacheService
from betsim.services.odds_cache_repository import OddsCacheRepository
from betsim.workers.job_queue import APSchedulerJobQueue, DurableJobQueue
from betsim.workers.settlement_worker import JOB_FUNC_REF, SettlementScheduler

SETTLEMENT_JOBSTORE = "settlement"


@dataclass
class Services:
    gateway: BaseOddsGateway
    markets: MarketCacheService
    ledger: BetLedgerService
    settlement: SettlementScheduler
    advisory: AdvisoryService


def build_services(
    scheduler: Optional[BaseScheduler] = None,
    *,
    gateway: Optional[BaseOddsGateway] = None,
    queue: Optional[DurableJobQueue] = None,
) -> Services:
    """Either ``scheduler`` or an explicit ``queue`` must be given."""
    gateway = gateway or TheOddsAPIGateway()
    if queue is None:
        if scheduler is None:
            raise ValueError("build_services needs a scheduler or a job queue")
        queue = APSchedulerJobQueue(scheduler, JOB_FUNC_REF, jobstore=SETTLEMENT_JOBSTORE)

    ledger_repository = LedgerRepository()
    markets = MarketCacheService(gateway, OddsCacheRepository())
    settlement = SettlementScheduler(ledger_repository, gateway, queue)
    return Services(
        gateway=gateway,
        markets=markets,
        ledger=BetLedgerService(ledger_repository, settlement),
        settlement=settlement,
        advisory=AdvisoryService(markets.get_event),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
