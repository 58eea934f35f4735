# leadengine/service_layer/monitoring.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..errors import AlertNotFoundError, InvalidAlertTransitionError
from ..integrations.base import Notifier
from ..models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    ImportRun,
    ImportRunStatus,
    JobRun,
    MarketAnalytics,
    PropertyMetric,
    utcnow,
)
from .importruns import api_calls_since
from .jobruns import finish_job_fail, finish_job_success, start_job

log = logging.getLogger(__name__)

QUOTA_CRITICAL_PERCENT = 95.0


@dataclass(frozen=True)
class AlertThresholds:
    high_lead_volume: float = 10.0  # leads per day
    import_failure: float = 80.0  # success rate % below this alerts
    import_lookback_hours: int = 24
    market_heat_change: float = 20.0  # abs % swing in heat score
    low_conversion: float = 5.0  # lead->conversion %
    low_conversion_min_leads: int = 5
    trending_score: float = 80.0
    trending_top_n: int = 3
    api_quota_percent: float = 80.0
    api_monthly_quota: int = 10000

    @classmethod
    def from_settings(cls) -> "AlertThresholds":
        return cls(
            high_lead_volume=settings.ALERT_HIGH_LEAD_VOLUME,
            import_failure=settings.ALERT_IMPORT_FAILURE,
            import_lookback_hours=settings.ALERT_IMPORT_LOOKBACK_HOURS,
            market_heat_change=settings.ALERT_MARKET_HEAT_CHANGE,
            low_conversion=settings.ALERT_LOW_CONVERSION,
            low_conversion_min_leads=settings.ALERT_LOW_CONVERSION_MIN_LEADS,
            trending_score=settings.ALERT_TRENDING_SCORE,
            trending_top_n=settings.ALERT_TRENDING_TOP_N,
            api_quota_percent=settings.ALERT_API_QUOTA_PERCENT,
            api_monthly_quota=settings.API_MONTHLY_QUOTA,
        )


@dataclass
class MonitoringReport:
    created: dict[str, list[int]] = field(default_factory=dict)  # check name -> new alert ids
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total_created(self) -> int:
        return sum(len(v) for v in self.created.values())

    def summary(self) -> dict[str, Any]:
        return {
            "created": {k: len(v) for k, v in self.created.items()},
            "total_created": self.total_created,
            "errors": dict(self.errors),
        }


def property_subject(property_id: int) -> str:
    return f"property:{property_id}"


def market_subject(city: str, state: str) -> str:
    return f"market:{city},{state}"


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class MonitoringService:
    """
    Threshold checks over the derived analytics tables.

    Every check runs in its own session and is isolated from the others: one
    failing check is logged and reported, the rest still run. An alert row is
    committed before the owner is notified, and a (type, subject) pair never has
    more than one unresolved alert. The monitor never resolves alerts itself.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        thresholds: AlertThresholds | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.notifier = notifier
        self.thresholds = thresholds or AlertThresholds.from_settings()

    def _checks(self) -> list[tuple[str, Callable[[datetime], Awaitable[list[int]]]]]:
        return [
            ("high_lead_volume", self.check_high_lead_volume),
            ("import_failures", self.check_import_failures),
            ("market_heat_changes", self.check_market_heat_changes),
            ("low_conversion_rates", self.check_low_conversion_rates),
            ("trending_properties", self.check_trending_properties),
            ("api_quota", self.check_api_quota),
        ]

    async def run_checks(self, now: datetime | None = None) -> MonitoringReport:
        now = now or utcnow()
        report = MonitoringReport()

        async with self.session_maker() as session:
            jr = await start_job(session, "monitoring")
            await session.commit()
            job_id = jr.id

        for name, check in self._checks():
            try:
                report.created[name] = await check(now)
            except Exception as e:
                log.exception("monitoring check %s failed", name)
                report.errors[name] = f"{type(e).__name__}: {e}"

        async with self.session_maker() as session:
            jr = await session.get(JobRun, job_id)
            if report.errors:
                await finish_job_fail(
                    session, jr, RuntimeError(f"{len(report.errors)} check(s) failed"), summary=report.summary()
                )
            else:
                await finish_job_success(session, jr, report.summary())
            await session.commit()

        log.info("monitoring: %s", report.summary())
        return report

    # -----------------------------
    # Alert creation
    # -----------------------------
    async def _open_alert(self, session: AsyncSession, alert_type: AlertType, subject: str) -> Alert | None:
        q = select(Alert).where(
            Alert.alert_type == alert_type,
            Alert.subject == subject,
            Alert.status != AlertStatus.resolved,
        )
        return (await session.execute(q.limit(1))).scalars().first()

    async def _raise_alert(
        self,
        *,
        alert_type: AlertType,
        subject: str,
        severity: AlertSeverity,
        title: str,
        message: str,
        details: dict[str, Any],
        now: datetime,
    ) -> Alert | None:
        """Check-then-create, commit, then notify. None when an unresolved alert already covers it."""
        async with self.session_maker() as session:
            if await self._open_alert(session, alert_type, subject) is not None:
                return None

            alert = Alert(
                alert_type=alert_type,
                subject=subject,
                severity=severity,
                title=title,
                message=message,
                details_json=json.dumps(details, default=str),
                status=AlertStatus.new,
                created_at=now,
            )
            session.add(alert)
            try:
                await session.commit()
            except IntegrityError:
                # another monitor pass got there first
                await session.rollback()
                return None
            log.info("alert %d %s %s: %s", alert.id, alert_type.value, subject, title)

            try:
                delivery = await self.notifier.notify(title, message, details)
            except Exception:
                log.exception("notification for alert %d raised", alert.id)
                return alert
            if delivery.ok:
                alert.notified = True
                alert.notified_at = utcnow()
                await session.commit()
            else:
                log.warning("notification for alert %d failed: %s", alert.id, delivery.error)
            return alert

    # -----------------------------
    # Checks
    # -----------------------------
    async def check_high_lead_volume(self, now: datetime) -> list[int]:
        created: list[int] = []
        async with self.session_maker() as session:
            q = select(PropertyMetric).where(PropertyMetric.avg_leads_per_day >= self.thresholds.high_lead_volume)
            for m in (await session.execute(q)).scalars().all():
                alert = await self._raise_alert(
                    alert_type=AlertType.high_lead_volume,
                    subject=property_subject(m.property_id),
                    severity=AlertSeverity.info,
                    title=f"High Lead Volume - Property {m.property_id}",
                    message=f"Property {m.property_id} is receiving {m.avg_leads_per_day:.1f} leads per day",
                    details={
                        "property_id": m.property_id,
                        "avg_leads_per_day": m.avg_leads_per_day,
                        "total_leads": m.total_leads,
                        "lead_score": m.lead_score,
                    },
                    now=now,
                )
                if alert is not None:
                    created.append(alert.id)
        return created

    async def check_import_failures(self, now: datetime) -> list[int]:
        since = now - timedelta(hours=self.thresholds.import_lookback_hours)
        created: list[int] = []
        async with self.session_maker() as session:
            q = (
                select(ImportRun)
                .where(
                    ImportRun.started_at >= since,
                    ImportRun.status != ImportRunStatus.started,
                    ImportRun.success_rate < self.thresholds.import_failure,
                    # an empty unit is fine, an empty unit because the provider never answered is not
                    or_(
                        ImportRun.properties_requested > 0,
                        and_(
                            ImportRun.status.in_([ImportRunStatus.partial, ImportRunStatus.failed]),
                            or_(ImportRun.error_message.is_not(None), ImportRun.rate_limited.is_(True)),
                        ),
                    ),
                )
                .order_by(ImportRun.started_at.desc())
            )
            for run in (await session.execute(q)).scalars().all():
                alert = await self._raise_alert(
                    alert_type=AlertType.import_failed,
                    subject=f"import:{run.provider}:{run.geo_unit}",
                    severity=AlertSeverity.warning,
                    title=f"Import Failure - {run.geo_unit}",
                    message=(
                        f"{run.provider} import for {run.geo_unit} finished with "
                        f"{run.success_rate:.1f}% success rate"
                    ),
                    details={
                        "import_run_id": run.id,
                        "provider": run.provider,
                        "geo_unit": run.geo_unit,
                        "success_rate": run.success_rate,
                        "properties_requested": run.properties_requested,
                        "properties_imported": run.properties_imported,
                        "properties_failed": run.properties_failed,
                        "error_message": run.error_message,
                    },
                    now=now,
                )
                if alert is not None:
                    created.append(alert.id)
        return created

    async def check_market_heat_changes(self, now: datetime) -> list[int]:
        since = now - timedelta(hours=24)
        created: list[int] = []
        async with self.session_maker() as session:
            q = select(MarketAnalytics).where(MarketAnalytics.updated_at >= since)
            for m in (await session.execute(q)).scalars().all():
                change = m.heat_change_percent or 0.0
                if abs(change) <= self.thresholds.market_heat_change:
                    continue
                direction = "increased" if change > 0 else "decreased"
                alert = await self._raise_alert(
                    alert_type=AlertType.market_heat_change,
                    subject=market_subject(m.city, m.state),
                    severity=AlertSeverity.info if change > 0 else AlertSeverity.warning,
                    title=f"Market Heat Change - {m.city}, {m.state}",
                    message=f"{m.city}, {m.state} market heat {direction} by {abs(change):.1f}% (now {m.market_heat.value})",
                    details={
                        "city": m.city,
                        "state": m.state,
                        "market_heat": m.market_heat.value,
                        "heat_score": m.heat_score,
                        "previous_heat_score": m.previous_heat_score,
                        "heat_change_percent": change,
                        "leads_per_property": m.leads_per_property,
                    },
                    now=now,
                )
                if alert is not None:
                    created.append(alert.id)
        return created

    async def check_low_conversion_rates(self, now: datetime) -> list[int]:
        created: list[int] = []
        async with self.session_maker() as session:
            q = select(PropertyMetric).where(
                PropertyMetric.total_leads >= self.thresholds.low_conversion_min_leads,
                PropertyMetric.lead_to_conversion_rate < self.thresholds.low_conversion,
            )
            for m in (await session.execute(q)).scalars().all():
                alert = await self._raise_alert(
                    alert_type=AlertType.low_conversion_rate,
                    subject=property_subject(m.property_id),
                    severity=AlertSeverity.warning,
                    title=f"Low Conversion Rate - Property {m.property_id}",
                    message=(
                        f"Property {m.property_id} has a low conversion rate of {m.lead_to_conversion_rate:.1f}% "
                        f"({m.total_conversions}/{m.total_leads} leads)"
                    ),
                    details={
                        "property_id": m.property_id,
                        "total_leads": m.total_leads,
                        "total_conversions": m.total_conversions,
                        "conversion_rate": m.lead_to_conversion_rate,
                        "lead_score": m.lead_score,
                    },
                    now=now,
                )
                if alert is not None:
                    created.append(alert.id)
        return created

    async def check_trending_properties(self, now: datetime) -> list[int]:
        created: list[int] = []
        async with self.session_maker() as session:
            q = (
                select(PropertyMetric)
                .order_by(PropertyMetric.lead_score.desc(), PropertyMetric.property_id)
                .limit(self.thresholds.trending_top_n)
            )
            for m in (await session.execute(q)).scalars().all():
                if m.lead_score <= self.thresholds.trending_score:
                    continue
                alert = await self._raise_alert(
                    alert_type=AlertType.property_trending,
                    subject=property_subject(m.property_id),
                    severity=AlertSeverity.info,
                    title=f"Trending Property - {m.property_id}",
                    message=f"Property {m.property_id} is trending with a lead score of {m.lead_score:.1f}",
                    details={
                        "property_id": m.property_id,
                        "lead_score": m.lead_score,
                        "total_leads": m.total_leads,
                        "avg_leads_per_day": m.avg_leads_per_day,
                        "market_rank": m.market_rank,
                    },
                    now=now,
                )
                if alert is not None:
                    created.append(alert.id)
        return created

    async def check_api_quota(self, now: datetime) -> list[int]:
        quota = self.thresholds.api_monthly_quota
        if quota <= 0:
            return []
        async with self.session_maker() as session:
            used = await api_calls_since(session, month_start(now))
            percent = used / quota * 100.0
            if percent <= self.thresholds.api_quota_percent:
                return []
            alert = await self._raise_alert(
                alert_type=AlertType.api_quota_warning,
                subject="global",
                severity=AlertSeverity.critical if percent > QUOTA_CRITICAL_PERCENT else AlertSeverity.warning,
                title="API Quota Warning",
                message=f"API quota usage is at {percent:.1f}% ({used}/{quota} calls)",
                details={"current_usage": used, "quota_limit": quota, "usage_percent": percent},
                now=now,
            )
            return [alert.id] if alert is not None else []


# -----------------------------
# Operator actions
# -----------------------------
async def list_alerts(session: AsyncSession, status: AlertStatus | None = None, limit: int = 100) -> list[Alert]:
    q = select(Alert).order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)
    if status is not None:
        q = q.where(Alert.status == status)
    return list((await session.execute(q)).scalars().all())


async def _get_alert(session: AsyncSession, alert_id: int) -> Alert:
    alert = await session.get(Alert, alert_id)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    return alert


async def acknowledge_alert(session: AsyncSession, alert_id: int, now: datetime | None = None) -> Alert:
    """new -> acknowledged. Acknowledging twice is a no-op; a resolved alert stays resolved."""
    alert = await _get_alert(session, alert_id)
    if alert.status == AlertStatus.resolved:
        raise InvalidAlertTransitionError(alert_id, alert.status.value, AlertStatus.acknowledged.value)
    if alert.status == AlertStatus.new:
        alert.status = AlertStatus.acknowledged
        alert.acknowledged_at = now or utcnow()
        await session.flush()
    return alert


async def resolve_alert(session: AsyncSession, alert_id: int, now: datetime | None = None) -> Alert:
    """new|acknowledged -> resolved. Frees the (type, subject) slot for a future alert."""
    alert = await _get_alert(session, alert_id)
    if alert.status == AlertStatus.resolved:
        raise InvalidAlertTransitionError(alert_id, alert.status.value, AlertStatus.resolved.value)
    alert.status = AlertStatus.resolved
    alert.resolved_at = now or utcnow()
    await session.flush()
    return alert
