"""Durable, uniquely keyed delayed jobs on top of APScheduler.

Scheduling under an existing key replaces the pending job, so at most one
instance per key is ever waiting. With a MongoDB job store the jobs survive
process restarts; misfired jobs still run once the process is back.

The MongoDB job store talks to the database through synchronous pymongo, so
``add_job`` runs in a worker thread and the event loop keeps serving requests.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from apscheduler.schedulers.base import BaseScheduler

from betsim.utils import utcnow

logger = logging.getLogger("betsim.job_queue")


class DurableJobQueue(ABC):
    @abstractmethod
    async def schedule(
        self,
        key: str,
        delay: timedelta,
        payload: dict[str, Any],
        constraints: Optional[dict[str, Any]] = None,
    ) -> None:
        """Run the queue's job with ``payload`` after ``delay``, replacing any job under ``key``."""
        ...


class APSchedulerJobQueue(DurableJobQueue):
    def __init__(
        self,
        scheduler: BaseScheduler,
        func: Union[str, Callable[..., Any]],
        jobstore: str = "default",
    ):
        # A textual reference ("module:function") keeps jobs serializable for
        # persistent job stores.
        self._scheduler = scheduler
        self._func = func
        self._jobstore = jobstore

    async def schedule(
        self,
        key: str,
        delay: timedelta,
        payload: dict[str, Any],
        constraints: Optional[dict[str, Any]] = None,
    ) -> None:
        run_date = utcnow() + max(delay, timedelta(0))
        await asyncio.to_thread(
            self._scheduler.add_job,
            self._func,
            "date",
            run_date=run_date,
            id=key,
            name=key,
            replace_existing=True,
            jobstore=self._jobstore,
            kwargs={"payload": dict(payload), "constraints": dict(constraints or {})},
            misfire_grace_time=None,
            coalesce=True,
        )
        logger.debug("Scheduled %s at %s", key, run_date.isoformat())
