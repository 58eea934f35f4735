# leadengine/jobs/scheduler.py
from __future__ import annotations

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..db import AsyncSessionLocal
from ..integrations.base import Notifier
from ..integrations.notifier import build_notifier
from ..service_layer.analytics import run_scoring_refresh
from ..service_layer.monitoring import MonitoringService
from ..service_layer.offmarket import run_off_market_sweep

log = logging.getLogger(__name__)


def build_scheduler(
    session_maker: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    notifier: Notifier | None = None,
) -> AsyncIOScheduler:
    """
    Monitoring runs once right away and then every MONITOR_INTERVAL_MINUTES.
    Scoring refresh feeds the monitor, the off-market sweep runs daily.
    """
    monitor = MonitoringService(session_maker, notifier or build_notifier())

    async def _run_monitoring() -> None:
        await monitor.run_checks()

    async def _run_scoring() -> None:
        async with session_maker() as session:
            await run_scoring_refresh(session)

    async def _run_off_market() -> None:
        async with session_maker() as session:
            await run_off_market_sweep(session)

    sched = AsyncIOScheduler()
    sched.add_job(
        _run_monitoring,
        "interval",
        minutes=settings.MONITOR_INTERVAL_MINUTES,
        next_run_time=datetime.now(),
        id="monitoring",
        max_instances=1,
        coalesce=True,
    )
    sched.add_job(
        _run_scoring,
        "interval",
        minutes=settings.SCORING_INTERVAL_MINUTES,
        id="scoring_refresh",
        max_instances=1,
        coalesce=True,
    )
    sched.add_job(_run_off_market, "interval", days=1, id="off_market_sweep", max_instances=1, coalesce=True)
    return sched
