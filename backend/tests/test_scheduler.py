from leadengine.jobs.scheduler import build_scheduler


async def test_scheduler_jobs(async_session_maker, notifier):
    sched = build_scheduler(async_session_maker, notifier)
    jobs = {j.id: j for j in sched.get_jobs()}

    assert set(jobs) == {"monitoring", "scoring_refresh", "off_market_sweep"}
    assert all(j.max_instances == 1 for j in jobs.values())
    assert all(j.coalesce for j in jobs.values())
