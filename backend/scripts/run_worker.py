# scripts/run_worker.py
"""
Run a single shard from a serialized assignment, e.g. when shards are spread over hosts:

    python scripts/run_worker.py --assignment '{"worker_id": 1, "provider": "zillow", "geo_units": [...]}'
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import httpx

from leadengine.adapters.ingestion.registry import build_adapter
from leadengine.adapters.repos.listings import ListingSink
from leadengine.db import AsyncSessionLocal, engine
from leadengine.entrypoints.logging_config import configure_logging
from leadengine.errors import WorkerConfigError
from leadengine.integrations.notifier import build_crm_relay
from leadengine.models import Base
from leadengine.service_layer.worker import ShardStatus, Worker, WorkerAssignment


async def main(argv: list[str] | None = None) -> int:
    configure_logging()
    p = argparse.ArgumentParser(description="Run one ingestion shard.")
    p.add_argument("--assignment", required=True, help="WorkerAssignment JSON")
    args = p.parse_args(argv)

    assignment = WorkerAssignment.from_json(args.assignment)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with httpx.AsyncClient() as client:
        try:
            adapter = build_adapter(assignment.provider, client)
        except WorkerConfigError as e:
            logging.getLogger("run_worker").error("worker %d: %s", assignment.worker_id, e)
            return 2
        worker = Worker(assignment, adapter, ListingSink(AsyncSessionLocal), AsyncSessionLocal, relay=build_crm_relay(client))
        result = await worker.run()

    print(json.dumps(result.summary(), indent=2))
    return 0 if result.status == ShardStatus.completed else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
