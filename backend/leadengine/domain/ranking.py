# leadengine/domain/ranking.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterable

from .scoring import round_half_up


@dataclass(frozen=True)
class RankedItem:
    key: Hashable
    score: float
    rank: int
    percentile: int


def rank_by_score(items: Iterable[tuple[Hashable, float]]) -> list[RankedItem]:
    """
    Descending by score, 1-based rank. Ties keep input order (sorted() is stable).
    percentile = round((N - rank + 1) / N * 100), so the top item of N is always 100.
    """
    rows = list(items)
    n = len(rows)
    ordered = sorted(rows, key=lambda kv: -kv[1])
    out: list[RankedItem] = []
    for idx, (key, score) in enumerate(ordered):
        rank = idx + 1
        pct = int(round_half_up((n - rank + 1) / n * 100))
        out.append(RankedItem(key=key, score=score, rank=rank, percentile=pct))
    return out


def price_percentile(price: float | None, market_prices: list[float]) -> float:
    """
    Share of market prices at or below `price`, 0-100. Unknown price sits at the median
    so it neither gains nor loses price-competitiveness points.
    """
    if price is None or not market_prices:
        return 50.0
    at_or_below = sum(1 for p in market_prices if p <= price)
    return at_or_below / len(market_prices) * 100.0
