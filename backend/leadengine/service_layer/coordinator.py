# leadengine/service_layer/coordinator.py
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.clients.http_resilience import Sleep
from ..adapters.ingestion.base import SourceAdapter
from ..adapters.ingestion.registry import build_adapter
from ..adapters.repos.listings import KeyedLocks, ListingSink
from ..domain.types import GeoUnit
from ..integrations.base import EventSink
from ..integrations.notifier import build_crm_relay
from ..models import JobRun
from .jobruns import finish_job_fail, finish_job_success, start_job
from .worker import CancelToken, ShardStatus, Worker, WorkerAssignment, WorkerResult

log = logging.getLogger(__name__)

AdapterFactory = Callable[[str, httpx.AsyncClient], SourceAdapter]


def partition(geo_units: Sequence[GeoUnit], worker_count: int, providers: Sequence[str]) -> list[WorkerAssignment]:
    """
    Contiguous shards of ceil(len/worker_count) units; shard i gets providers[i % len(providers)].
    Shards that end up empty are not emitted. Worker ids are 1-based shard indexes.
    """
    if worker_count < 1:
        raise ValueError("worker_count must be >= 1")
    if not providers:
        raise ValueError("at least one provider is required")

    units = list(geo_units)
    if not units:
        return []

    size = math.ceil(len(units) / worker_count)
    out: list[WorkerAssignment] = []
    for i in range(worker_count):
        chunk = units[i * size : (i + 1) * size]
        if not chunk:
            continue
        out.append(WorkerAssignment(worker_id=i + 1, provider=providers[i % len(providers)], geo_units=tuple(chunk)))
    return out


@dataclass
class AggregateResult:
    started: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    results: list[WorkerResult] = field(default_factory=list)
    job_run_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.cancelled == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "workers": [r.summary() for r in self.results],
        }


class Coordinator:
    """
    Fans a geo-unit list out over N in-process workers and joins them all.
    One shard failing never cancels or blocks the others, and nothing is retried here.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        adapter_factory: AdapterFactory | None = None,
        relay: EventSink | None = None,
        sleep: Sleep = asyncio.sleep,
        worker_options: dict[str, Any] | None = None,
    ) -> None:
        self.session_maker = session_maker
        self._adapter_factory = adapter_factory
        self._relay = relay
        self._sleep = sleep
        self._worker_options = dict(worker_options or {})
        self._tokens: dict[int, CancelToken] = {}

    def cancel_shard(self, worker_id: int) -> bool:
        token = self._tokens.get(worker_id)
        if token is None:
            return False
        log.warning("cancelling shard %d", worker_id)
        token.cancel()
        return True

    def cancel_all(self) -> None:
        for worker_id in list(self._tokens):
            self.cancel_shard(worker_id)

    async def run(self, geo_units: Sequence[GeoUnit], worker_count: int, providers: Sequence[str]) -> AggregateResult:
        assignments = partition(geo_units, worker_count, providers)
        self._tokens = {a.worker_id: CancelToken() for a in assignments}

        async with self.session_maker() as session:
            jr = await start_job(
                session,
                "coordinator",
                meta={"workers": worker_count, "providers": list(providers), "geo_units": len(geo_units)},
            )
            await session.commit()
            job_run_id = jr.id

        agg = AggregateResult(started=len(assignments), job_run_id=job_run_id)
        log.info("coordinator: %d shard(s) over %d geo-unit(s)", len(assignments), len(geo_units))

        sink = ListingSink(self.session_maker, KeyedLocks())
        async with httpx.AsyncClient() as client:
            relay = self._relay if self._relay is not None else build_crm_relay(client)
            outcomes = await asyncio.gather(
                *(self._run_shard(a, client, sink, relay, job_run_id) for a in assignments),
                return_exceptions=True,
            )

        for assignment, outcome in zip(assignments, outcomes):
            if isinstance(outcome, WorkerResult):
                res = outcome
            else:
                log.error("shard %d (%s) failed: %r", assignment.worker_id, assignment.provider, outcome)
                res = WorkerResult(
                    worker_id=assignment.worker_id,
                    provider=assignment.provider,
                    errors=[f"{type(outcome).__name__}: {outcome}"],
                )
            agg.results.append(res)
            if res.status == ShardStatus.completed:
                agg.completed += 1
            elif res.status == ShardStatus.cancelled:
                agg.cancelled += 1
            else:
                agg.failed += 1

        async with self.session_maker() as session:
            jr = await session.get(JobRun, job_run_id)
            if agg.ok:
                await finish_job_success(session, jr, agg.summary())
            else:
                await finish_job_fail(
                    session,
                    jr,
                    RuntimeError(f"{agg.failed} shard(s) failed, {agg.cancelled} cancelled"),
                    summary=agg.summary(),
                )
            await session.commit()

        log.info(
            "coordinator: started=%d completed=%d failed=%d cancelled=%d",
            agg.started, agg.completed, agg.failed, agg.cancelled,
        )
        return agg

    async def _run_shard(
        self,
        assignment: WorkerAssignment,
        client: httpx.AsyncClient,
        sink: ListingSink,
        relay: EventSink | None,
        job_run_id: int,
    ) -> WorkerResult:
        # WorkerConfigError surfaces here and fails only this shard
        if self._adapter_factory is not None:
            adapter = self._adapter_factory(assignment.provider, client)
        else:
            adapter = build_adapter(assignment.provider, client, sleep=self._sleep)
        worker = Worker(
            assignment,
            adapter,
            sink,
            self.session_maker,
            relay=relay,
            cancel=self._tokens[assignment.worker_id],
            job_run_id=job_run_id,
            sleep=self._sleep,
            **self._worker_options,
        )
        return await worker.run()
