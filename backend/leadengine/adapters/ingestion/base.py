# leadengine/adapters/ingestion/base.py
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol

import httpx

from ...config import settings
from ...domain.types import GeoUnit, ListingRecord, PageOutcome, PageResult
from ...errors import WorkerConfigError
from ..clients.http_resilience import FetchResult, FetchStatus, RetryPolicy, Sleep, fetch_json

log = logging.getLogger(__name__)


class SourceAdapter(Protocol):
    provider: str
    fetches_images: bool  # fetch_images makes its own provider call

    async def fetch_page(self, geo_unit: GeoUnit, page_token: str | None) -> PageResult:
        """One page for one geo-unit. page_token=None asks for the first page."""
        ...

    async def fetch_images(self, record: ListingRecord) -> list[str]:
        ...


class RapidApiSourceAdapter(ABC):
    """
    Shared plumbing for RapidAPI-hosted listing providers. Subclasses only know
    their own URL, query params, pagination token arithmetic and field mapping.
    """

    provider: str = ""
    fetches_images: bool = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str | None,
        base_url: str,
        host: str,
        page_size: int | None = None,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise WorkerConfigError(f"RAPIDAPI_KEY is not set (provider={self.provider})")
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._host = host
        self.page_size = int(page_size or settings.PAGE_SIZE)
        self._policy = policy or RetryPolicy.for_search()
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {"accept": "application/json", "X-RapidAPI-Key": self._api_key, "X-RapidAPI-Host": self._host}

    async def _get(self, path: str, params: dict[str, Any]) -> FetchResult:
        return await fetch_json(
            self._client,
            "GET",
            f"{self._base_url}/{path.lstrip('/')}",
            policy=self._policy,
            headers=self._headers(),
            params=params,
            sleep=self._sleep,
        )

    @abstractmethod
    def _request(self, geo_unit: GeoUnit, page_token: str | None) -> tuple[str, dict[str, Any]]:
        """(path, params) for the page addressed by page_token."""

    @abstractmethod
    def _next_token(self, page_token: str | None) -> str:
        ...

    @abstractmethod
    def _extract_items(self, payload: Any) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def normalize(self, item: dict[str, Any], geo_unit: GeoUnit) -> ListingRecord | None:
        """Provider record -> canonical record. None when the item lacks a usable id or address."""

    async def fetch_page(self, geo_unit: GeoUnit, page_token: str | None) -> PageResult:
        path, params = self._request(geo_unit, page_token)
        res = await self._get(path, params)

        if res.status == FetchStatus.rate_limited:
            log.warning(
                "%s %s token=%s: still rate limited after %d attempts, conceding page",
                self.provider, geo_unit.label, page_token, res.attempts,
            )
            return PageResult([], None, PageOutcome.rate_limited, api_calls=res.attempts)

        if not res.ok:
            log.warning(
                "%s %s token=%s: %s (http=%s) after %d attempts",
                self.provider, geo_unit.label, page_token, res.status.value, res.http_status, res.attempts,
            )
            return PageResult([], None, PageOutcome.http_error, api_calls=res.attempts)

        items = self._extract_items(res.payload)
        if not items:
            return PageResult([], None, PageOutcome.empty, api_calls=res.attempts)

        records: list[ListingRecord] = []
        for item in items:
            try:
                rec = self.normalize(item, geo_unit)
            except (TypeError, ValueError, KeyError) as e:
                log.warning("%s %s: could not normalize item: %s", self.provider, geo_unit.label, e)
                continue
            if rec is not None:
                records.append(rec)

        return PageResult(
            records,
            self._next_token(page_token),
            PageOutcome.ok,
            api_calls=res.attempts,
            raw_count=len(items),
        )

    async def fetch_images(self, record: ListingRecord) -> list[str]:
        return list(record.image_urls)
