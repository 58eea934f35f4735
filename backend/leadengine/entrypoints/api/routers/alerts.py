# leadengine/entrypoints/api/routers/alerts.py
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....db import get_session
from ....errors import AlertNotFoundError, InvalidAlertTransitionError
from ....models import Alert, AlertStatus
from ....schemas import AlertOut
from ....service_layer.monitoring import acknowledge_alert, list_alerts, resolve_alert

router = APIRouter(tags=["alerts"], dependencies=[Depends(require_api_key)])


def _out(a: Alert) -> AlertOut:
    return AlertOut(
        id=a.id,
        alert_type=a.alert_type.value,
        subject=a.subject,
        severity=a.severity.value,
        status=a.status.value,
        title=a.title,
        message=a.message,
        details=json.loads(a.details_json) if a.details_json else None,
        notified=a.notified,
        notified_at=a.notified_at,
        acknowledged_at=a.acknowledged_at,
        resolved_at=a.resolved_at,
        created_at=a.created_at,
    )


@router.get("/alerts", response_model=list[AlertOut])
async def get_alerts(
    status: AlertStatus | None = Query(default=None),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[AlertOut]:
    return [_out(a) for a in await list_alerts(session, status=status, limit=limit)]


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertOut)
async def post_acknowledge(alert_id: int, session: AsyncSession = Depends(get_session)) -> AlertOut:
    try:
        alert = await acknowledge_alert(session, alert_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidAlertTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await session.commit()
    return _out(alert)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertOut)
async def post_resolve(alert_id: int, session: AsyncSession = Depends(get_session)) -> AlertOut:
    try:
        alert = await resolve_alert(session, alert_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidAlertTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await session.commit()
    return _out(alert)
