# scripts/run_coordinator.py
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from leadengine.config import settings
from leadengine.db import AsyncSessionLocal, engine
from leadengine.entrypoints.logging_config import configure_logging
from leadengine.errors import WorkerConfigError
from leadengine.jobs.markets import default_geo_units, parse_geo_units
from leadengine.models import Base
from leadengine.service_layer.coordinator import Coordinator

log = logging.getLogger("run_coordinator")


def _csv(raw: str | None) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Shard geo-units across parallel ingestion workers.")
    p.add_argument("--workers", type=int, default=settings.WORKER_COUNT)
    p.add_argument("--providers", default=",".join(settings.PROVIDERS), help="comma separated, round-robin per shard")
    p.add_argument("--zips", default=None, help="comma separated ZIPs (overrides the default markets)")
    p.add_argument("--city", default=None)
    p.add_argument("--state", default=None)
    p.add_argument("--cities", default=None, help="limit the default markets to these cities")
    return p


async def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)

    units = parse_geo_units(_csv(args.zips), args.city, args.state) or default_geo_units(_csv(args.cities) or None)
    providers = _csv(args.providers)
    if not units:
        log.error("no geo-units to ingest")
        return 2

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    coordinator = Coordinator(AsyncSessionLocal)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, coordinator.cancel_all)
        loop.add_signal_handler(signal.SIGTERM, coordinator.cancel_all)
    except NotImplementedError:
        # Windows event loops
        pass

    try:
        agg = await coordinator.run(units, args.workers, providers)
    except (WorkerConfigError, ValueError) as e:
        log.error("invalid run configuration: %s", e)
        return 2

    print(json.dumps(agg.summary(), indent=2, default=str))
    return agg.exit_code


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
