# leadengine/adapters/clients/http_resilience.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from ...config import settings

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_TRANSIENT_STATUSES = (500, 502, 503, 504)


class FetchStatus(str, Enum):
    ok = "ok"
    rate_limited = "rate_limited"  # still 429 after the last attempt
    transient = "transient"  # 5xx / transport error after the last attempt
    http_error = "http_error"  # non-retryable status or undecodable body


@dataclass(frozen=True)
class RetryPolicy:
    timeout_s: float
    rate_limit_backoff_s: float
    max_attempts: int
    backoff_base_s: float

    @classmethod
    def for_search(cls) -> "RetryPolicy":
        return cls(
            timeout_s=float(settings.HTTP_SEARCH_TIMEOUT_S),
            rate_limit_backoff_s=float(settings.HTTP_RATE_LIMIT_BACKOFF_S),
            max_attempts=max(1, int(settings.HTTP_MAX_ATTEMPTS)),
            backoff_base_s=float(settings.HTTP_BACKOFF_BASE_S),
        )

    def transient_backoff(self, attempt: int) -> float:
        return min(5.0, self.backoff_base_s * (2 ** (attempt - 1)))


@dataclass(frozen=True)
class FetchResult:
    status: FetchStatus
    payload: Any = None
    attempts: int = 0
    http_status: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.ok


async def fetch_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: RetryPolicy,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FetchResult:
    """
    Bounded retry loop. Never raises for HTTP-level trouble:
      - 429: sleep the fixed rate-limit window, retry the same request
      - 5xx / timeout / connection or protocol failure: exponential backoff, retry
      - other non-2xx: give up immediately (soft failure)
    The loop ends after policy.max_attempts requests; the returned status says why.
    """
    last: FetchResult | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.request(
                method, url, headers=headers, params=params, timeout=policy.timeout_s
            )
        except httpx.TransportError as e:
            last = FetchResult(FetchStatus.transient, attempts=attempt, error=f"{type(e).__name__}: {e}")
            log.warning("transient error on %s (attempt %d/%d): %s", url, attempt, policy.max_attempts, e)
            if attempt < policy.max_attempts:
                await sleep(policy.transient_backoff(attempt))
            continue

        if resp.status_code == 429:
            last = FetchResult(FetchStatus.rate_limited, attempts=attempt, http_status=429, error="rate limited")
            log.warning(
                "rate limited on %s (attempt %d/%d), waiting %.1fs",
                url, attempt, policy.max_attempts, policy.rate_limit_backoff_s,
            )
            if attempt < policy.max_attempts:
                await sleep(policy.rate_limit_backoff_s)
            continue

        if resp.status_code in _TRANSIENT_STATUSES:
            last = FetchResult(
                FetchStatus.transient, attempts=attempt, http_status=resp.status_code, error=resp.text[:300]
            )
            log.warning("HTTP %d on %s (attempt %d/%d)", resp.status_code, url, attempt, policy.max_attempts)
            if attempt < policy.max_attempts:
                await sleep(policy.transient_backoff(attempt))
            continue

        if not resp.is_success:
            log.error("HTTP %d on %s: %s", resp.status_code, url, resp.text[:300])
            return FetchResult(
                FetchStatus.http_error, attempts=attempt, http_status=resp.status_code, error=resp.text[:500]
            )

        try:
            payload = resp.json()
        except ValueError as e:
            log.error("undecodable JSON from %s: %s", url, e)
            return FetchResult(FetchStatus.http_error, attempts=attempt, http_status=resp.status_code, error=str(e))
        return FetchResult(FetchStatus.ok, payload=payload, attempts=attempt, http_status=resp.status_code)

    assert last is not None
    return last
