# leadengine/service_layer/analytics.py
from __future__ import annotations

import json
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.ranking import price_percentile, rank_by_score
from ..domain.scoring import (
    LeadScoreInput,
    MarketHeatInput,
    PropertyScoreInput,
    QualificationData,
    compute_lead_score,
    compute_market_heat,
    compute_property_score,
    predict_conversion_probability,
    round_half_up,
)
from ..domain.types import LeadChannel, ListingStatus, MarketHeat
from ..errors import LeadNotFoundError, PropertyNotFoundError
from ..models import (
    Lead,
    LeadScoreRecord,
    LeadStatus,
    MarketAnalytics,
    Property,
    PropertyMetric,
    PropertyView,
    utcnow,
)
from .jobruns import finish_job_fail, finish_job_success, start_job

log = logging.getLogger(__name__)

VIEW_WINDOW_DAYS = 30  # property score saturates on views per month
LEAD_RATE_WINDOW_DAYS = 7  # avg_leads_per_day is measured over the last week
MARKET_PERIOD_DAYS = 30

Market = tuple[str, str]


def _pct(num: float, den: float) -> float:
    return round_half_up(num / den * 100.0, 2) if den else 0.0


def _days_on_market(prop: Property, now: datetime) -> float:
    since = prop.listed_at or prop.created_at or now
    return max(0.0, (now - since).total_seconds() / 86400.0)


# -----------------------------
# Engagement intake
# -----------------------------
@dataclass(frozen=True)
class LeadIntake:
    property_id: int
    channel: LeadChannel = LeadChannel.other
    engagement_seconds: float = 0.0
    budget_min: float | None = None
    budget_max: float | None = None
    bedroom_need: int | None = None
    timeline_months: int | None = None
    pre_approved: bool = False


async def _get_property(session: AsyncSession, property_id: int) -> Property:
    prop = await session.get(Property, property_id)
    if prop is None:
        raise PropertyNotFoundError(property_id)
    return prop


async def record_property_view(session: AsyncSession, property_id: int, now: datetime | None = None) -> PropertyView:
    await _get_property(session, property_id)
    view = PropertyView(property_id=property_id, viewed_at=now or utcnow())
    session.add(view)
    await session.flush()
    return view


async def capture_lead(
    session: AsyncSession, intake: LeadIntake, now: datetime | None = None
) -> tuple[Lead, LeadScoreRecord]:
    """Store the lead and its first, immutable score record."""
    prop = await _get_property(session, intake.property_id)
    now = now or utcnow()
    lead = Lead(
        property_id=prop.id,
        channel=intake.channel,
        engagement_seconds=max(0.0, float(intake.engagement_seconds)),
        budget_min=intake.budget_min,
        budget_max=intake.budget_max,
        bedroom_need=intake.bedroom_need,
        timeline_months=intake.timeline_months,
        pre_approved=intake.pre_approved,
        status=LeadStatus.new,
        created_at=now,
    )
    session.add(lead)
    await session.flush()

    record = await _score_lead(session, lead, prop, now)
    log.info("lead %d on property %d scored %.1f (%s)", lead.id, prop.id, record.score, record.quality.value)
    return lead, record


async def rescore_lead(session: AsyncSession, lead_id: int, now: datetime | None = None) -> LeadScoreRecord:
    """Appends a new score record; earlier ones are history and stay untouched."""
    lead = await session.get(Lead, lead_id)
    if lead is None:
        raise LeadNotFoundError(lead_id)
    prop = await _get_property(session, lead.property_id)
    return await _score_lead(session, lead, prop, now or utcnow())


async def _market_heat(session: AsyncSession, city: str, state: str) -> MarketHeat:
    q = select(MarketAnalytics.market_heat).where(MarketAnalytics.city == city, MarketAnalytics.state == state)
    heat = (await session.execute(q)).scalar_one_or_none()
    return heat or MarketHeat.warm


async def _historical_conversion_rate(session: AsyncSession) -> float | None:
    total = (await session.execute(select(func.count(Lead.id)))).scalar_one()
    if not total:
        return None
    converted = (
        await session.execute(select(func.count(Lead.id)).where(Lead.status == LeadStatus.converted))
    ).scalar_one()
    if not converted:
        return None
    return converted / total * 100.0


async def _current_property_score(session: AsyncSession, prop: Property, now: datetime) -> float:
    metric = (
        await session.execute(select(PropertyMetric).where(PropertyMetric.property_id == prop.id))
    ).scalars().first()
    if metric is not None:
        return metric.lead_score

    # never refreshed yet: score it from what we have right now
    heat = await _market_heat(session, prop.city, prop.state)
    prices = await _market_prices(session, prop.city, prop.state)
    ps = compute_property_score(
        PropertyScoreInput(
            views=0,
            leads=0,
            lead_to_conversion_rate=0.0,
            view_to_lead_rate=0.0,
            market_heat=heat,
            price_percentile=price_percentile(prop.price, prices),
            days_on_market=_days_on_market(prop, now),
        )
    )
    return ps.score


async def _score_lead(session: AsyncSession, lead: Lead, prop: Property, now: datetime) -> LeadScoreRecord:
    competing = (
        await session.execute(
            select(func.count(Lead.id)).where(Lead.property_id == prop.id, Lead.id != lead.id)
        )
    ).scalar_one()

    price_range = None
    if lead.budget_min is not None or lead.budget_max is not None:
        price_range = (lead.budget_min or 0.0, lead.budget_max or 0.0)

    property_score = await _current_property_score(session, prop, now)
    ls = compute_lead_score(
        LeadScoreInput(
            property_score=property_score,
            engagement_seconds=lead.engagement_seconds,
            channel=lead.channel,
            qualification=QualificationData(
                price_range=price_range,
                bedroom_need=lead.bedroom_need,
                timeline_months=lead.timeline_months,
                pre_approved=bool(lead.pre_approved),
            ),
            competing_leads=int(competing),
        )
    )
    heat = await _market_heat(session, prop.city, prop.state)
    probability = predict_conversion_probability(
        quality=ls.quality,
        property_score=property_score,
        market_heat=heat,
        historical_conversion_rate=await _historical_conversion_rate(session),
    )

    record = LeadScoreRecord(
        lead_id=lead.id,
        property_id=prop.id,
        score=ls.score,
        quality=ls.quality,
        lead_source=lead.channel.value,
        conversion_probability=probability,
        factors_json=json.dumps(ls.factors),
        created_at=now,
    )
    session.add(record)
    await session.flush()
    return record


# -----------------------------
# Periodic recompute
# -----------------------------
async def _market_prices(session: AsyncSession, city: str, state: str) -> list[float]:
    q = select(Property.price).where(
        Property.city == city,
        Property.state == state,
        Property.listing_status == ListingStatus.active,
        Property.price.isnot(None),
    )
    return [float(p) for p in (await session.execute(q)).scalars().all()]


async def recompute_market_analytics(session: AsyncSession, now: datetime | None = None) -> list[MarketAnalytics]:
    """
    One row per (city, state) seen in the listing store. Heat is scored from the
    listing and lead aggregates; the previous heat score is kept to measure the swing.
    """
    now = now or utcnow()
    props = (await session.execute(select(Property))).scalars().all()
    leads = (await session.execute(select(Lead.property_id, Lead.status))).all()

    market_of: dict[int, Market] = {}
    by_market: dict[Market, list[Property]] = defaultdict(list)
    for p in props:
        key = (p.city, p.state)
        market_of[p.id] = key
        by_market[key].append(p)

    lead_counts: dict[Market, list[int]] = defaultdict(lambda: [0, 0])  # [leads, converted]
    for property_id, status in leads:
        key = market_of.get(property_id)
        if key is None:
            continue
        lead_counts[key][0] += 1
        if status == LeadStatus.converted:
            lead_counts[key][1] += 1

    existing = {
        (m.city, m.state): m for m in (await session.execute(select(MarketAnalytics))).scalars().all()
    }

    out: list[MarketAnalytics] = []
    for (city, state), rows in sorted(by_market.items()):
        active = [p for p in rows if p.listing_status == ListingStatus.active]
        sold = sum(1 for p in rows if p.listing_status == ListingStatus.sold)
        prices = [float(p.price) for p in active if p.price is not None]
        avg_price = round_half_up(statistics.fmean(prices), 2) if prices else None
        median_price = float(statistics.median(prices)) if prices else None
        avg_dom = round_half_up(statistics.fmean(_days_on_market(p, now) for p in active), 1) if active else 0.0
        n_leads, n_converted = lead_counts[(city, state)]

        row = existing.get((city, state))
        prev_avg = row.avg_price if row is not None else None
        price_change = _pct(avg_price - prev_avg, prev_avg) if (avg_price is not None and prev_avg) else 0.0

        leads_per_property = round_half_up(n_leads / len(rows), 2) if rows else 0.0
        conversion_rate = _pct(n_converted, n_leads)

        heat = compute_market_heat(
            MarketHeatInput(
                total_properties=len(rows),
                active_listings=len(active),
                avg_days_on_market=avg_dom,
                price_change_percent=price_change,
                leads_per_property=leads_per_property,
                conversion_rate=conversion_rate,
            )
        )

        if row is None:
            row = MarketAnalytics(city=city, state=state)
            session.add(row)
            previous = None
        else:
            previous = row.heat_score

        row.total_properties = len(rows)
        row.active_listings = len(active)
        row.sold_listings = sold
        row.avg_price = avg_price
        row.median_price = median_price
        row.price_change_percent = price_change
        row.avg_days_on_market = avg_dom
        row.total_leads = n_leads
        row.leads_per_property = leads_per_property
        row.conversion_rate = conversion_rate
        row.previous_heat_score = previous
        row.heat_change_percent = _pct(heat.score - previous, previous) if previous else 0.0
        row.heat_score = heat.score
        row.market_heat = heat.heat
        row.explain = heat.explain
        row.period_start = now - timedelta(days=MARKET_PERIOD_DAYS)
        row.period_end = now
        row.updated_at = now
        out.append(row)

    await session.flush()
    return out


async def recompute_property_metrics(session: AsyncSession, now: datetime | None = None) -> list[PropertyMetric]:
    """
    Rebuild PropertyMetric for every listing and rank each one within its (city, state).
    Market heat comes from MarketAnalytics, so refresh markets first.
    """
    now = now or utcnow()
    view_since = now - timedelta(days=VIEW_WINDOW_DAYS)
    lead_since = now - timedelta(days=LEAD_RATE_WINDOW_DAYS)

    props = (await session.execute(select(Property).order_by(Property.id))).scalars().all()
    heat_by_market: dict[Market, MarketHeat] = {
        (m.city, m.state): m.market_heat
        for m in (await session.execute(select(MarketAnalytics))).scalars().all()
    }

    views_total: dict[int, int] = defaultdict(int)
    views_recent: dict[int, int] = defaultdict(int)
    for property_id, viewed_at in (await session.execute(select(PropertyView.property_id, PropertyView.viewed_at))).all():
        views_total[property_id] += 1
        if viewed_at >= view_since:
            views_recent[property_id] += 1

    leads_total: dict[int, int] = defaultdict(int)
    leads_recent: dict[int, int] = defaultdict(int)
    conversions: dict[int, int] = defaultdict(int)
    last_lead: dict[int, datetime] = {}
    for property_id, status, created_at in (
        await session.execute(select(Lead.property_id, Lead.status, Lead.created_at))
    ).all():
        leads_total[property_id] += 1
        if status == LeadStatus.converted:
            conversions[property_id] += 1
        if created_at >= lead_since:
            leads_recent[property_id] += 1
        if property_id not in last_lead or created_at > last_lead[property_id]:
            last_lead[property_id] = created_at

    market_prices: dict[Market, list[float]] = defaultdict(list)
    for p in props:
        if p.listing_status == ListingStatus.active and p.price is not None:
            market_prices[(p.city, p.state)].append(float(p.price))

    existing = {
        m.property_id: m for m in (await session.execute(select(PropertyMetric))).scalars().all()
    }

    metrics: dict[int, PropertyMetric] = {}
    by_market: dict[Market, list[tuple[int, float]]] = defaultdict(list)
    for p in props:
        key = (p.city, p.state)
        n_views = views_total[p.id]
        n_leads = leads_total[p.id]
        n_conv = conversions[p.id]
        view_to_lead = _pct(n_leads, n_views)
        lead_to_conv = _pct(n_conv, n_leads)

        ps = compute_property_score(
            PropertyScoreInput(
                views=views_recent[p.id],
                leads=n_leads,
                lead_to_conversion_rate=lead_to_conv,
                view_to_lead_rate=view_to_lead,
                market_heat=heat_by_market.get(key, MarketHeat.warm),
                price_percentile=price_percentile(p.price, market_prices.get(key, [])),
                days_on_market=_days_on_market(p, now),
            )
        )

        m = existing.get(p.id)
        if m is None:
            m = PropertyMetric(property_id=p.id)
            session.add(m)
        m.total_views = n_views
        m.total_leads = n_leads
        m.total_conversions = n_conv
        m.view_to_lead_rate = view_to_lead
        m.lead_to_conversion_rate = lead_to_conv
        m.avg_leads_per_day = round_half_up(leads_recent[p.id] / LEAD_RATE_WINDOW_DAYS, 2)
        m.lead_score = ps.score
        m.score_factors_json = json.dumps(ps.factors)
        m.last_lead_at = last_lead.get(p.id)
        m.updated_at = now

        metrics[p.id] = m
        by_market[key].append((p.id, ps.score))

    for key, scored in by_market.items():
        avg = round_half_up(statistics.fmean(s for _, s in scored), 1) if scored else 0.0
        for item in rank_by_score(scored):
            m = metrics[item.key]
            m.market_rank = item.rank
            m.market_percentile = item.percentile
            m.city_average_score = avg

    await session.flush()
    return list(metrics.values())


async def run_scoring_refresh(session: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    """Markets first (property scores read market heat), then properties. Tracked as a JobRun."""
    now = now or utcnow()
    jr = await start_job(session, "scoring_refresh")
    await session.commit()
    try:
        markets = await recompute_market_analytics(session, now)
        metrics = await recompute_property_metrics(session, now)
    except Exception as e:
        await session.rollback()
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise

    summary = {"markets": len(markets), "properties": len(metrics)}
    await finish_job_success(session, jr, summary)
    await session.commit()
    log.info("scoring refresh: %s", summary)
    return summary
