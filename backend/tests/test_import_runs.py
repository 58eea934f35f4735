import pytest

from leadengine.errors import ImportRunClosedError
from leadengine.models import ImportRun, ImportRunStatus
from leadengine.service_layer.importruns import (
    api_calls_since,
    close_import_run,
    latest_import_runs,
    start_import_run,
    success_rate,
)


def test_success_rate():
    assert success_rate(25, 30) == 83.3
    assert success_rate(30, 30) == 100.0
    assert success_rate(0, 0) == 0.0


async def test_close_sets_counters_and_duration(async_session_maker):
    async with async_session_maker() as session:
        run = await start_import_run(session, provider="zillow", geo_unit="33602", worker_id=1)
        await close_import_run(
            session, run.id, status=ImportRunStatus.completed, requested=30, imported=25, failed=0, skipped=5,
            api_calls=3, pages_fetched=3,
        )
        await session.commit()
        stored = await session.get(ImportRun, run.id)

    assert stored.status == ImportRunStatus.completed
    assert stored.success_rate == 83.3
    assert stored.properties_skipped == 5
    assert stored.completed_at is not None
    assert stored.duration_s is not None and stored.duration_s >= 0


async def test_closed_run_is_immutable(async_session_maker):
    async with async_session_maker() as session:
        run = await start_import_run(session, provider="zillow", geo_unit="33602")
        await close_import_run(session, run.id, status=ImportRunStatus.failed, requested=0, imported=0, failed=0)
        await session.commit()

        with pytest.raises(ImportRunClosedError):
            await close_import_run(
                session, run.id, status=ImportRunStatus.completed, requested=10, imported=10, failed=0
            )


async def test_close_requires_terminal_status(async_session_maker):
    async with async_session_maker() as session:
        run = await start_import_run(session, provider="zillow", geo_unit="33602")
        with pytest.raises(ValueError):
            await close_import_run(session, run.id, status=ImportRunStatus.started, requested=0, imported=0, failed=0)
        with pytest.raises(LookupError):
            await close_import_run(session, 9999, status=ImportRunStatus.completed, requested=0, imported=0, failed=0)


async def test_latest_and_api_call_totals(async_session_maker):
    async with async_session_maker() as session:
        first = await start_import_run(session, provider="zillow", geo_unit="33602")
        await close_import_run(
            session, first.id, status=ImportRunStatus.completed, requested=1, imported=1, failed=0, api_calls=4
        )
        second = await start_import_run(session, provider="realty_in_us", geo_unit="33603")
        await close_import_run(
            session, second.id, status=ImportRunStatus.partial, requested=1, imported=0, failed=1, api_calls=6
        )
        await session.commit()

        latest = await latest_import_runs(session, limit=1)
        total = await api_calls_since(session, first.started_at)

    assert [r.id for r in latest] == [second.id]
    assert total == 10
