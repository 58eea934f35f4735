# leadengine/adapters/ingestion/registry.py
from __future__ import annotations

import asyncio

import httpx

from ...config import settings
from ...errors import WorkerConfigError
from ..clients.http_resilience import RetryPolicy, Sleep
from .base import RapidApiSourceAdapter
from .realty_in_us import RealtyInUsAdapter
from .zillow import ZillowAdapter

ADAPTERS: dict[str, type[RapidApiSourceAdapter]] = {
    RealtyInUsAdapter.provider: RealtyInUsAdapter,
    ZillowAdapter.provider: ZillowAdapter,
}


def _endpoint(provider: str) -> tuple[str, str]:
    if provider == "realty_in_us":
        return settings.REALTY_IN_US_BASE_URL, settings.REALTY_IN_US_HOST
    return settings.ZILLOW_BASE_URL, settings.ZILLOW_HOST


def build_adapter(
    provider: str,
    client: httpx.AsyncClient,
    *,
    api_key: str | None = None,
    page_size: int | None = None,
    policy: RetryPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
) -> RapidApiSourceAdapter:
    cls = ADAPTERS.get(provider)
    if cls is None:
        raise WorkerConfigError(f"unknown provider {provider!r} (known: {', '.join(sorted(ADAPTERS))})")
    base_url, host = _endpoint(provider)
    return cls(
        client,
        api_key=api_key if api_key is not None else settings.RAPIDAPI_KEY,
        base_url=base_url,
        host=host,
        page_size=page_size,
        policy=policy,
        sleep=sleep,
    )
