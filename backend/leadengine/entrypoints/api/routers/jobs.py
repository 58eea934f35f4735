# leadengine/entrypoints/api/routers/jobs.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..deps import get_notifier, get_session_maker, require_api_key
from ....db import get_session
from ....integrations.base import Notifier
from ....models import ImportRun
from ....schemas import ImportRunOut, JobSummary
from ....service_layer.analytics import run_scoring_refresh
from ....service_layer.importruns import latest_import_runs
from ....service_layer.monitoring import MonitoringService
from ....service_layer.offmarket import run_off_market_sweep

router = APIRouter(tags=["jobs"], dependencies=[Depends(require_api_key)])


@router.post("/jobs/scoring", response_model=JobSummary)
async def jobs_scoring(session: AsyncSession = Depends(get_session)) -> JobSummary:
    return JobSummary(job="scoring_refresh", summary=await run_scoring_refresh(session))


@router.post("/jobs/monitoring", response_model=JobSummary)
async def jobs_monitoring(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    notifier: Notifier = Depends(get_notifier),
) -> JobSummary:
    report = await MonitoringService(session_maker, notifier).run_checks()
    return JobSummary(job="monitoring", summary=report.summary())


@router.post("/jobs/off-market", response_model=JobSummary)
async def jobs_off_market(session: AsyncSession = Depends(get_session)) -> JobSummary:
    return JobSummary(job="off_market_sweep", summary=await run_off_market_sweep(session))


def _run_out(r: ImportRun) -> ImportRunOut:
    return ImportRunOut(
        id=r.id,
        job_run_id=r.job_run_id,
        worker_id=r.worker_id,
        provider=r.provider,
        geo_unit=r.geo_unit,
        status=r.status.value,
        properties_requested=r.properties_requested,
        properties_imported=r.properties_imported,
        properties_failed=r.properties_failed,
        properties_skipped=r.properties_skipped,
        success_rate=r.success_rate,
        api_calls=r.api_calls,
        pages_fetched=r.pages_fetched,
        rate_limited=r.rate_limited,
        error_message=r.error_message,
        started_at=r.started_at,
        completed_at=r.completed_at,
    )


@router.get("/import-runs/latest", response_model=list[ImportRunOut])
async def import_runs_latest(
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> list[ImportRunOut]:
    return [_run_out(r) for r in await latest_import_runs(session, limit=limit)]
