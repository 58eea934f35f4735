# leadengine/service_layer/worker.py
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.http_resilience import Sleep
from ..adapters.ingestion.base import SourceAdapter
from ..adapters.repos.listings import ListingSink
from ..config import settings
from ..domain.types import GeoUnit, ListingRecord, PageOutcome
from ..integrations.base import EventSink
from ..models import ImportRunStatus
from .importruns import close_import_run, start_import_run

log = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation for one shard. Checked before every page and every record."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class ShardStatus(str, Enum):
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


@dataclass(frozen=True)
class WorkerAssignment:
    """Everything a worker needs to start. Serializable so it can cross a process boundary."""

    worker_id: int
    provider: str
    geo_units: tuple[GeoUnit, ...]

    def to_json(self) -> str:
        return json.dumps(
            {
                "worker_id": self.worker_id,
                "provider": self.provider,
                "geo_units": [g.to_dict() for g in self.geo_units],
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "WorkerAssignment":
        d = json.loads(raw)
        return cls(
            worker_id=int(d["worker_id"]),
            provider=str(d["provider"]),
            geo_units=tuple(GeoUnit.from_dict(g) for g in d.get("geo_units") or []),
        )


@dataclass(frozen=True)
class UnitResult:
    geo_unit: GeoUnit
    provider: str
    import_run_id: int | None
    status: ImportRunStatus
    requested: int = 0
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    pages: int = 0
    api_calls: int = 0
    rate_limited: bool = False
    cancelled: bool = False
    relayed: int = 0


@dataclass
class WorkerResult:
    worker_id: int
    provider: str
    units: list[UnitResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def status(self) -> ShardStatus:
        if self.errors:
            return ShardStatus.failed
        if self.cancelled:
            return ShardStatus.cancelled
        return ShardStatus.completed

    def totals(self) -> dict[str, int]:
        out = {"requested": 0, "imported": 0, "failed": 0, "skipped": 0, "pages": 0, "api_calls": 0, "relayed": 0}
        for u in self.units:
            out["requested"] += u.requested
            out["imported"] += u.imported
            out["failed"] += u.failed
            out["skipped"] += u.skipped
            out["pages"] += u.pages
            out["api_calls"] += u.api_calls
            out["relayed"] += u.relayed
        return out

    def summary(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "provider": self.provider,
            "status": self.status.value,
            "units": len(self.units),
            "errors": list(self.errors),
            **self.totals(),
        }


def _has_photo(record: ListingRecord) -> bool:
    return bool(record.primary_image or record.image_urls)


def _relay_payload(record: ListingRecord, property_id: int) -> dict[str, Any]:
    return {
        "property_id": property_id,
        "provider": record.provider,
        "provider_listing_id": record.provider_listing_id,
        "address": record.address_line,
        "city": record.city,
        "state": record.state,
        "zipcode": record.zipcode,
        "price": record.price,
        "distressed_flags": sorted(f.value for f in record.distressed_flags),
        "listing_url": record.listing_url,
        "primary_image": record.primary_image,
    }


class Worker:
    """
    Drives one provider across its assigned geo-units.

    Units run concurrently up to unit_concurrency. Pages within a unit are strictly
    sequential: page k+1 is only requested with the token page k returned. A unit
    finishes on an empty page, on max_pages, or when the provider stops handing out tokens.
    """

    def __init__(
        self,
        assignment: WorkerAssignment,
        adapter: SourceAdapter,
        sink: ListingSink,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        relay: EventSink | None = None,
        cancel: CancelToken | None = None,
        job_run_id: int | None = None,
        max_pages: int | None = None,
        unit_concurrency: int | None = None,
        page_delay_s: float | None = None,
        item_delay_s: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.assignment = assignment
        self.adapter = adapter
        self.sink = sink
        self.session_maker = session_maker
        self.relay = relay
        self.cancel = cancel or CancelToken()
        self.job_run_id = job_run_id
        self.max_pages = int(max_pages or settings.MAX_PAGES_PER_UNIT)
        self.unit_concurrency = max(1, int(unit_concurrency or settings.UNIT_CONCURRENCY))
        self.page_delay_s = float(settings.PAGE_DELAY_S if page_delay_s is None else page_delay_s)
        self.item_delay_s = float(settings.ITEM_DELAY_S if item_delay_s is None else item_delay_s)
        self._sleep = sleep

    @property
    def _tag(self) -> str:
        return f"worker {self.assignment.worker_id} ({self.assignment.provider})"

    async def run(self) -> WorkerResult:
        result = WorkerResult(worker_id=self.assignment.worker_id, provider=self.assignment.provider)
        units = self.assignment.geo_units
        log.info("%s: starting with %d geo-unit(s)", self._tag, len(units))

        sem = asyncio.Semaphore(self.unit_concurrency)

        async def guarded(unit: GeoUnit) -> UnitResult | None:
            async with sem:
                if self.cancel.cancelled:
                    # never started, so no ImportRun either
                    return None
                return await self._run_unit(unit)

        outcomes = await asyncio.gather(*(guarded(u) for u in units), return_exceptions=True)
        for unit, outcome in zip(units, outcomes):
            if outcome is None:
                result.cancelled = True
            elif isinstance(outcome, UnitResult):
                result.units.append(outcome)
                if outcome.cancelled:
                    result.cancelled = True
            else:
                log.error("%s: unit %s failed: %r", self._tag, unit.label, outcome)
                result.errors.append(f"{unit.label}: {type(outcome).__name__}: {outcome}")

        if self.cancel.cancelled:
            result.cancelled = True

        log.info("%s: %s %s", self._tag, result.status.value, result.totals())
        return result

    async def _run_unit(self, unit: GeoUnit) -> UnitResult:
        provider = self.assignment.provider
        async with self.session_maker() as session:
            run = await start_import_run(
                session,
                provider=provider,
                geo_unit=unit.label,
                worker_id=self.assignment.worker_id,
                job_run_id=self.job_run_id,
            )
            await session.commit()
            run_id = run.id

        requested = imported = failed = skipped = pages = api_calls = relayed = 0
        rate_limited = cancelled = False
        errors: list[str] = []
        token: str | None = None

        try:
            while pages < self.max_pages:
                if self.cancel.cancelled:
                    cancelled = True
                    break
                if pages:
                    await self._sleep(self.page_delay_s)

                page = await self.adapter.fetch_page(unit, token)
                api_calls += page.api_calls

                if page.outcome == PageOutcome.rate_limited:
                    rate_limited = True
                    errors.append(f"rate limited at page {pages + 1}")
                    break
                if page.outcome == PageOutcome.http_error:
                    errors.append(f"provider error at page {pages + 1}")
                    break
                if page.outcome == PageOutcome.empty:
                    break

                pages += 1
                raw = page.raw_count or len(page.records)
                requested += raw
                # items the adapter could not normalize
                failed += max(0, raw - len(page.records))

                for record in page.records:
                    if self.cancel.cancelled:
                        cancelled = True
                        break
                    outcome = await self._process_record(record)
                    if outcome == "imported":
                        imported += 1
                    elif outcome == "relayed":
                        imported += 1
                        relayed += 1
                    elif outcome == "skipped":
                        skipped += 1
                    else:
                        failed += 1

                if cancelled or page.next_token is None:
                    break
                token = page.next_token
        except Exception as e:
            await self._close(run_id, ImportRunStatus.failed, requested, imported, failed, skipped, api_calls,
                              pages, rate_limited, f"{type(e).__name__}: {e}")
            raise

        if cancelled:
            errors.append("cancelled")
        status = ImportRunStatus.partial if (rate_limited or failed or errors) else ImportRunStatus.completed

        await self._close(run_id, status, requested, imported, failed, skipped, api_calls, pages, rate_limited,
                          "; ".join(errors) or None)

        return UnitResult(
            geo_unit=unit,
            provider=provider,
            import_run_id=run_id,
            status=status,
            requested=requested,
            imported=imported,
            failed=failed,
            skipped=skipped,
            pages=pages,
            api_calls=api_calls,
            rate_limited=rate_limited,
            cancelled=cancelled,
            relayed=relayed,
        )

    async def _close(
        self,
        run_id: int,
        status: ImportRunStatus,
        requested: int,
        imported: int,
        failed: int,
        skipped: int,
        api_calls: int,
        pages: int,
        rate_limited: bool,
        error: str | None,
    ) -> None:
        async with self.session_maker() as session:
            await close_import_run(
                session,
                run_id,
                status=status,
                requested=requested,
                imported=imported,
                failed=failed,
                skipped=skipped,
                api_calls=api_calls,
                pages_fetched=pages,
                rate_limited=rate_limited,
                error_message=error,
            )
            await session.commit()

    async def _process_record(self, record: ListingRecord) -> str:
        """imported | relayed | skipped | failed. Never raises for a single bad record."""
        if not _has_photo(record):
            log.debug("%s: %s has no photo, skipping", self._tag, record.provider_listing_id)
            return "skipped"

        try:
            images = list(record.image_urls)
            if getattr(self.adapter, "fetches_images", False):
                images = await self.adapter.fetch_images(record) or images
                await self._sleep(self.item_delay_s)
            if not images and record.primary_image:
                images = [record.primary_image]

            res = await self.sink.upsert(record, images)
            await self._sleep(self.item_delay_s)
        except Exception:
            log.exception("%s: failed to store %s/%s", self._tag, record.provider, record.provider_listing_id)
            return "failed"

        if res.property_id is None:
            # its photos all belong to other listings
            return "skipped"

        if not (res.created and record.is_distressed and self.relay is not None):
            return "imported"

        # best effort: the listing is already stored
        try:
            delivery = await self.relay.deliver("distressed_listing", _relay_payload(record, res.property_id))
        except Exception:
            log.exception("%s: relay raised for %s", self._tag, record.provider_listing_id)
            return "imported"
        finally:
            await self._sleep(self.item_delay_s)
        if not delivery.ok:
            log.warning("%s: relay failed for %s: %s", self._tag, record.provider_listing_id, delivery.error)
            return "imported"
        return "relayed"
