# leadengine/entrypoints/fastapi_app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ..config import settings
from ..db import engine
from ..models import Base
from .api.routers import alerts, health, jobs, leads
from .logging_config import configure_logging


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Single place where DB tables are created in dev.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="LeadEngine - Listing Ingestion & Scoring",
        lifespan=_lifespan,
        docs_url=None if settings.ENV == "prod" else "/docs",
    )

    app.include_router(health.router)
    app.include_router(alerts.router)
    app.include_router(leads.router)
    app.include_router(jobs.router)
    return app


app = create_app()
