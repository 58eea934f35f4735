# leadengine/entrypoints/api/routers/leads.py
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....db import get_session
from ....domain.types import LeadChannel
from ....errors import LeadNotFoundError, PropertyNotFoundError
from ....models import LeadScoreRecord, PropertyMetric
from ....schemas import LeadCreate, LeadScoreOut, PropertyMetricOut, ViewOut
from ....service_layer.analytics import LeadIntake, capture_lead, record_property_view, rescore_lead

router = APIRouter(tags=["leads"])


def _score_out(r: LeadScoreRecord) -> LeadScoreOut:
    return LeadScoreOut(
        id=r.id,
        lead_id=r.lead_id,
        property_id=r.property_id,
        score=r.score,
        quality=r.quality.value,
        lead_source=r.lead_source,
        conversion_probability=r.conversion_probability,
        factors=json.loads(r.factors_json or "{}"),
        created_at=r.created_at,
    )


@router.post("/leads", response_model=LeadScoreOut, status_code=201)
async def post_lead(body: LeadCreate, session: AsyncSession = Depends(get_session)) -> LeadScoreOut:
    intake = LeadIntake(
        property_id=body.property_id,
        channel=LeadChannel(body.channel),
        engagement_seconds=body.engagement_seconds,
        budget_min=body.budget_min,
        budget_max=body.budget_max,
        bedroom_need=body.bedroom_need,
        timeline_months=body.timeline_months,
        pre_approved=body.pre_approved,
    )
    try:
        _, record = await capture_lead(session, intake)
    except PropertyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await session.commit()
    return _score_out(record)


@router.post("/leads/{lead_id}/rescore", response_model=LeadScoreOut, dependencies=[Depends(require_api_key)])
async def post_rescore(lead_id: int, session: AsyncSession = Depends(get_session)) -> LeadScoreOut:
    try:
        record = await rescore_lead(session, lead_id)
    except (LeadNotFoundError, PropertyNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    await session.commit()
    return _score_out(record)


@router.post("/properties/{property_id}/views", response_model=ViewOut, status_code=201)
async def post_view(property_id: int, session: AsyncSession = Depends(get_session)) -> ViewOut:
    try:
        view = await record_property_view(session, property_id)
    except PropertyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await session.commit()
    return ViewOut(id=view.id, property_id=view.property_id, viewed_at=view.viewed_at)


@router.get("/properties/{property_id}/metrics", response_model=PropertyMetricOut)
async def get_metrics(property_id: int, session: AsyncSession = Depends(get_session)) -> PropertyMetricOut:
    m = (
        await session.execute(select(PropertyMetric).where(PropertyMetric.property_id == property_id))
    ).scalars().first()
    if m is None:
        raise HTTPException(status_code=404, detail=f"no metrics for property {property_id}")
    return PropertyMetricOut(
        property_id=m.property_id,
        total_views=m.total_views,
        total_leads=m.total_leads,
        total_conversions=m.total_conversions,
        view_to_lead_rate=m.view_to_lead_rate,
        lead_to_conversion_rate=m.lead_to_conversion_rate,
        avg_leads_per_day=m.avg_leads_per_day,
        lead_score=m.lead_score,
        score_factors=json.loads(m.score_factors_json) if m.score_factors_json else None,
        market_rank=m.market_rank,
        market_percentile=m.market_percentile,
        city_average_score=m.city_average_score,
        updated_at=m.updated_at,
    )
