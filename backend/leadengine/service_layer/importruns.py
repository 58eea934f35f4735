# leadengine/service_layer/importruns.py
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.scoring import round_half_up
from ..errors import ImportRunClosedError
from ..models import ImportRun, ImportRunStatus, utcnow

log = logging.getLogger(__name__)

_CLOSED = (ImportRunStatus.completed, ImportRunStatus.failed)


def success_rate(imported: int, requested: int) -> float:
    """Percent, one decimal. Nothing requested means nothing succeeded."""
    if requested <= 0:
        return 0.0
    return round_half_up(imported / requested * 100.0, 1)


async def start_import_run(
    session: AsyncSession,
    *,
    provider: str,
    geo_unit: str,
    worker_id: int | None = None,
    job_run_id: int | None = None,
) -> ImportRun:
    run = ImportRun(
        provider=provider,
        geo_unit=geo_unit,
        worker_id=worker_id,
        job_run_id=job_run_id,
        status=ImportRunStatus.started,
        started_at=utcnow(),
    )
    session.add(run)
    await session.flush()
    return run


async def close_import_run(
    session: AsyncSession,
    run_id: int,
    *,
    status: ImportRunStatus,
    requested: int,
    imported: int,
    failed: int,
    skipped: int = 0,
    api_calls: int = 0,
    pages_fetched: int = 0,
    rate_limited: bool = False,
    error_message: str | None = None,
) -> ImportRun:
    """
    Write final counters. A run that already reached completed/failed is never touched again.
    """
    if status == ImportRunStatus.started:
        raise ValueError("close_import_run needs a terminal status")

    run = await session.get(ImportRun, run_id)
    if run is None:
        raise LookupError(f"import run {run_id} not found")
    if run.status in _CLOSED:
        raise ImportRunClosedError(run_id, run.status.value)

    now = utcnow()
    run.status = status
    run.properties_requested = requested
    run.properties_imported = imported
    run.properties_failed = failed
    run.properties_skipped = skipped
    run.success_rate = success_rate(imported, requested)
    run.api_calls = api_calls
    run.pages_fetched = pages_fetched
    run.rate_limited = rate_limited
    run.error_message = error_message
    run.completed_at = now
    run.duration_s = round((now - run.started_at).total_seconds(), 3)
    await session.flush()

    log.info(
        "import run %d %s %s: %s requested=%d imported=%d failed=%d skipped=%d rate=%.1f%%",
        run.id, run.provider, run.geo_unit, status.value, requested, imported, failed, skipped, run.success_rate,
    )
    return run


async def latest_import_runs(session: AsyncSession, limit: int = 20) -> list[ImportRun]:
    q = select(ImportRun).order_by(ImportRun.started_at.desc(), ImportRun.id.desc()).limit(limit)
    return list((await session.execute(q)).scalars().all())


async def api_calls_since(session: AsyncSession, since: datetime) -> int:
    q = select(func.coalesce(func.sum(ImportRun.api_calls), 0)).where(ImportRun.started_at >= since)
    return int((await session.execute(q)).scalar_one())
