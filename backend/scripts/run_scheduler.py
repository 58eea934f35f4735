from __future__ import annotations

import asyncio
import logging

from leadengine.entrypoints.logging_config import configure_logging
from leadengine.jobs.scheduler import build_scheduler


async def main() -> None:
    configure_logging()

    scheduler = build_scheduler()
    scheduler.start()
    logging.getLogger(__name__).info("Scheduler started")

    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        scheduler.shutdown()
        logging.getLogger(__name__).info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
