from sqlalchemy import select

from leadengine.domain.types import GeoUnit, PageOutcome, PageResult
from leadengine.errors import WorkerConfigError
from leadengine.models import ImportRun, JobRun, JobRunStatus
from leadengine.service_layer.coordinator import Coordinator
from leadengine.service_layer.worker import ShardStatus

UNITS = [GeoUnit(zipcode=z, city="Tampa", state="FL") for z in ("33602", "33603", "33604", "33605")]
NO_DELAYS = {"page_delay_s": 0, "item_delay_s": 0, "unit_concurrency": 1}


class OnePageAdapter:
    fetches_images = False

    def __init__(self, provider, make_record, on_fetch=None):
        self.provider = provider
        self.make_record = make_record
        self.on_fetch = on_fetch

    async def fetch_page(self, geo_unit, page_token):
        if self.on_fetch is not None:
            self.on_fetch(geo_unit)
        rec = self.make_record(f"{self.provider}-{geo_unit.zipcode}", provider=self.provider, zipcode=geo_unit.zipcode)
        return PageResult([rec], None, PageOutcome.ok, api_calls=1, raw_count=1)

    async def fetch_images(self, record):
        return list(record.image_urls)


async def _job(session_maker, job_run_id):
    async with session_maker() as session:
        return await session.get(JobRun, job_run_id)


async def test_all_shards_complete(async_session_maker, make_record, no_sleep):
    coord = Coordinator(
        async_session_maker,
        adapter_factory=lambda provider, client: OnePageAdapter(provider, make_record),
        sleep=no_sleep,
        worker_options=NO_DELAYS,
    )

    agg = await coord.run(UNITS, 2, ["realty_in_us", "zillow"])

    assert (agg.started, agg.completed, agg.failed, agg.cancelled) == (2, 2, 0, 0)
    assert agg.exit_code == 0
    assert [r.provider for r in agg.results] == ["realty_in_us", "zillow"]

    async with async_session_maker() as session:
        runs = list((await session.execute(select(ImportRun))).scalars().all())
    assert len(runs) == 4
    assert {r.job_run_id for r in runs} == {agg.job_run_id}

    jr = await _job(async_session_maker, agg.job_run_id)
    assert jr.job_name == "coordinator"
    assert jr.status == JobRunStatus.success


async def test_config_error_fails_only_that_shard(async_session_maker, make_record, no_sleep):
    def factory(provider, client):
        if provider == "broken":
            raise WorkerConfigError("RAPIDAPI_KEY is not set (provider=broken)")
        return OnePageAdapter(provider, make_record)

    coord = Coordinator(async_session_maker, adapter_factory=factory, sleep=no_sleep, worker_options=NO_DELAYS)
    agg = await coord.run(UNITS, 2, ["zillow", "broken"])

    assert (agg.completed, agg.failed) == (1, 1)
    assert agg.exit_code == 1
    broken = agg.results[1]
    assert broken.status == ShardStatus.failed
    assert "WorkerConfigError" in broken.errors[0]
    assert agg.results[0].totals()["imported"] == 2

    jr = await _job(async_session_maker, agg.job_run_id)
    assert jr.status == JobRunStatus.failed
    assert jr.summary_json is not None


async def test_cancel_one_shard_leaves_the_other_running(async_session_maker, make_record, no_sleep):
    holder = {}

    def factory(provider, client):
        # shard 1 cancels itself on its first page
        hook = (lambda unit: holder["coord"].cancel_shard(1)) if provider == "realty_in_us" else None
        return OnePageAdapter(provider, make_record, on_fetch=hook)

    coord = Coordinator(async_session_maker, adapter_factory=factory, sleep=no_sleep, worker_options=NO_DELAYS)
    holder["coord"] = coord
    agg = await coord.run(UNITS, 2, ["realty_in_us", "zillow"])

    assert agg.results[0].status == ShardStatus.cancelled
    assert agg.results[1].status == ShardStatus.completed
    assert agg.results[1].totals()["imported"] == 2
    assert (agg.completed, agg.cancelled) == (1, 1)
    assert agg.exit_code == 1


async def test_cancel_unknown_shard(async_session_maker):
    coord = Coordinator(async_session_maker)
    assert coord.cancel_shard(42) is False
