# leadengine/service_layer/offmarket.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..domain.types import ListingStatus
from ..models import Property, utcnow
from .jobruns import finish_job_fail, finish_job_success, start_job

log = logging.getLogger(__name__)


async def mark_stale_listings_off_market(
    session: AsyncSession, now: datetime | None = None, stale_days: int | None = None
) -> int:
    """
    Active listings not seen by any import for `stale_days` become off_market.
    Only rows past the last_seen_at cutoff are touched; anything seen recently stays active.
    Returns the number of listings changed.
    """
    now = now or utcnow()
    days = int(stale_days if stale_days is not None else settings.OFF_MARKET_STALE_DAYS)
    cutoff = now - timedelta(days=days)

    stmt = (
        update(Property)
        .where(Property.listing_status == ListingStatus.active, Property.last_seen_at < cutoff)
        .values(listing_status=ListingStatus.off_market, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    count = int(res.rowcount or 0)
    log.info("off-market sweep: %d listing(s) not seen since %s", count, cutoff.isoformat())
    return count


async def run_off_market_sweep(session: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    jr = await start_job(session, "off_market_sweep", meta={"stale_days": settings.OFF_MARKET_STALE_DAYS})
    await session.commit()
    try:
        changed = await mark_stale_listings_off_market(session, now)
    except Exception as e:
        await session.rollback()
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise
    summary = {"marked_off_market": changed}
    await finish_job_success(session, jr, summary)
    await session.commit()
    return summary
