import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from leadengine.domain.scoring import quality_for_score
from leadengine.domain.types import LeadChannel, MarketHeat
from leadengine.errors import LeadNotFoundError, PropertyNotFoundError
from leadengine.models import (
    JobRun,
    JobRunStatus,
    LeadScoreRecord,
    MarketAnalytics,
    Property,
    PropertyMetric,
    utcnow,
)
from leadengine.service_layer.analytics import (
    LeadIntake,
    capture_lead,
    recompute_market_analytics,
    recompute_property_metrics,
    record_property_view,
    rescore_lead,
    run_scoring_refresh,
)


async def _seed_market(session_maker, now):
    async with session_maker() as session:
        props = [
            Property(provider="zillow", provider_listing_id=str(i), address_line=f"{i} Bay Dr", city="Tampa",
                     state="FL", zipcode="33602", price=price, listed_at=now - timedelta(days=1))
            for i, price in enumerate([200000.0, 300000.0, 400000.0], start=1)
        ]
        session.add_all(props)
        await session.commit()
        return [p.id for p in props]


async def test_capture_and_rescore_lead(async_session_maker, seeded_property):
    async with async_session_maker() as session:
        lead, record = await capture_lead(
            session,
            LeadIntake(property_id=seeded_property.id, channel=LeadChannel.property_detail, engagement_seconds=150,
                       budget_min=200000, budget_max=300000, bedroom_need=3, timeline_months=2, pre_approved=True),
        )
        await session.commit()

        assert 0 <= record.score <= 100
        assert record.quality == quality_for_score(record.score)
        assert record.lead_source == "property_detail"
        factors = json.loads(record.factors_json)
        assert factors["qualification_score"] == 15.0
        assert factors["competition_score"] == 5.0

        second = await rescore_lead(session, lead.id)
        await session.commit()
        count = (await session.execute(select(func.count(LeadScoreRecord.id)))).scalar_one()

    assert second.id != record.id
    assert count == 2


async def test_lead_and_view_on_missing_property(async_session_maker):
    async with async_session_maker() as session:
        with pytest.raises(PropertyNotFoundError):
            await capture_lead(session, LeadIntake(property_id=404))
        with pytest.raises(PropertyNotFoundError):
            await record_property_view(session, 404)
        with pytest.raises(LeadNotFoundError):
            await rescore_lead(session, 404)


async def test_market_heat_change_is_tracked(async_session_maker):
    now = utcnow()
    await _seed_market(async_session_maker, now)
    async with async_session_maker() as session:
        session.add(MarketAnalytics(city="Tampa", state="FL", heat_score=40.0, market_heat=MarketHeat.warm))
        await session.commit()

        [row] = await recompute_market_analytics(session, now)
        await session.commit()

    # 50 baseline + 20 for one day on market, nothing else
    assert row.heat_score == 70.0
    assert row.market_heat == MarketHeat.hot
    assert row.previous_heat_score == 40.0
    assert row.heat_change_percent == 75.0
    assert row.total_properties == 3
    assert row.avg_price == 300000.0
    assert row.median_price == 300000.0


async def test_property_metrics_rank_within_market(async_session_maker):
    now = utcnow()
    ids = await _seed_market(async_session_maker, now)
    async with async_session_maker() as session:
        for _ in range(3):
            await record_property_view(session, ids[0], now=now)
        await capture_lead(session, LeadIntake(property_id=ids[0]), now=now)
        await session.commit()

        await recompute_market_analytics(session, now)
        metrics = await recompute_property_metrics(session, now)
        await session.commit()

    by_id = {m.property_id: m for m in metrics}
    top = by_id[ids[0]]
    assert top.total_views == 3
    assert top.total_leads == 1
    assert top.view_to_lead_rate == 33.33
    assert top.market_rank == 1
    assert top.market_percentile == 100
    assert sorted(m.market_rank for m in metrics) == [1, 2, 3]
    assert top.avg_leads_per_day == 0.14
    assert all(0 <= m.lead_score <= 100 for m in metrics)
    assert len({m.city_average_score for m in metrics}) == 1


async def test_scoring_refresh_is_a_job(async_session_maker):
    await _seed_market(async_session_maker, utcnow())
    async with async_session_maker() as session:
        summary = await run_scoring_refresh(session)
        jr = (await session.execute(select(JobRun).where(JobRun.job_name == "scoring_refresh"))).scalars().one()
        metric_count = (await session.execute(select(func.count(PropertyMetric.id)))).scalar_one()

    assert summary == {"markets": 1, "properties": 3}
    assert jr.status == JobRunStatus.success
    assert metric_count == 3
