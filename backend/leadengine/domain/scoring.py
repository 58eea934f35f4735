# leadengine/domain/scoring.py
from __future__ import annotations

import math
from dataclasses import dataclass

from .types import LeadChannel, LeadQuality, MarketHeat


def round_half_up(x: float, ndigits: int = 0) -> float:
    """Round like a spreadsheet does (0.5 goes up), not banker's rounding."""
    m = 10**ndigits
    return math.floor(x * m + 0.5) / m


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _saturating(value: float, ceiling: float, weight: float) -> float:
    """Linear from 0 to `weight` as value goes from 0 to `ceiling`, flat beyond it."""
    if ceiling <= 0:
        return 0.0
    return _clamp((max(value, 0.0) / ceiling) * weight, 0.0, weight)


# -----------------------------
# Property score
# -----------------------------
W_VIEWS = 20.0
W_LEADS = 30.0
W_CONVERSION = 20.0
W_MARKET = 10.0
W_PRICE = 10.0
W_RECENCY = 5.0
W_ENGAGEMENT = 5.0

VIEWS_CEILING = 100.0  # views per month
LEADS_CEILING = 50.0
CONVERSION_RATE_CEILING = 10.0  # percent
ENGAGEMENT_RATE_CEILING = 20.0  # view->lead percent

MARKET_HEAT_POINTS: dict[MarketHeat, float] = {
    MarketHeat.cold: 2.0,
    MarketHeat.warm: 5.0,
    MarketHeat.hot: 8.0,
    MarketHeat.very_hot: 10.0,
}


@dataclass(frozen=True)
class PropertyScoreInput:
    views: float
    leads: float
    lead_to_conversion_rate: float  # percent
    view_to_lead_rate: float  # percent
    market_heat: MarketHeat
    price_percentile: float  # 0-100 within the market, 50 is the median
    days_on_market: float


@dataclass(frozen=True)
class PropertyScore:
    score: float
    factors: dict[str, float]


def recency_points(days_on_market: float) -> float:
    if days_on_market <= 7:
        return W_RECENCY
    if days_on_market <= 30:
        return 3.0
    return 1.0


def price_points(price_percentile: float) -> float:
    distance = abs(_clamp(price_percentile, 0.0, 100.0) - 50.0)
    return _clamp(W_PRICE - (distance / 50.0) * W_PRICE, 0.0, W_PRICE)


def compute_property_score(inp: PropertyScoreInput) -> PropertyScore:
    factors = {
        "views": _saturating(inp.views, VIEWS_CEILING, W_VIEWS),
        "leads": _saturating(inp.leads, LEADS_CEILING, W_LEADS),
        "conversions": _saturating(inp.lead_to_conversion_rate, CONVERSION_RATE_CEILING, W_CONVERSION),
        "market_trend": _clamp(MARKET_HEAT_POINTS[inp.market_heat], 0.0, W_MARKET),
        "price_competitiveness": price_points(inp.price_percentile),
        "days_on_market": recency_points(inp.days_on_market),
        "engagement_rate": _saturating(inp.view_to_lead_rate, ENGAGEMENT_RATE_CEILING, W_ENGAGEMENT),
    }
    total = sum(factors.values())
    return PropertyScore(score=round_half_up(_clamp(total, 0.0, 100.0), 1), factors=factors)


# -----------------------------
# Lead score
# -----------------------------
W_PROPERTY = 0.40
W_QUALIFICATION_CAP = 15.0
W_COMPETITION = 5.0

SOURCE_POINTS: dict[LeadChannel, float] = {
    LeadChannel.property_detail: 15.0,  # direct property page
    LeadChannel.search: 12.0,
    LeadChannel.email: 10.0,
    LeadChannel.ad: 8.0,
    LeadChannel.other: 5.0,
}


@dataclass(frozen=True)
class QualificationData:
    price_range: tuple[float, float] | None = None
    bedroom_need: int | None = None
    timeline_months: int | None = None
    pre_approved: bool = False


@dataclass(frozen=True)
class LeadScoreInput:
    property_score: float
    engagement_seconds: float
    channel: LeadChannel
    qualification: QualificationData | None = None
    competing_leads: int = 0


@dataclass(frozen=True)
class LeadScore:
    score: float
    quality: LeadQuality
    factors: dict[str, float]


def engagement_points(seconds: float) -> float:
    if seconds < 30:
        return 5.0
    if seconds < 120:
        return 15.0
    return 25.0


def qualification_points(q: QualificationData | None) -> float:
    if q is None:
        return 0.0
    pts = 0.0
    if q.price_range:
        pts += 3.0
    if q.bedroom_need:
        pts += 3.0
    if q.timeline_months is not None and 0 < q.timeline_months <= 3:
        pts += 5.0
    if q.pre_approved:
        pts += 4.0
    return min(pts, W_QUALIFICATION_CAP)


def competition_points(competing_leads: int) -> float:
    if competing_leads <= 0:
        return W_COMPETITION
    return max(W_COMPETITION - competing_leads, 0.0)


def quality_for_score(score: float) -> LeadQuality:
    # lower bound of each tier is inclusive
    if score >= 75:
        return LeadQuality.hot
    if score >= 50:
        return LeadQuality.warm
    if score >= 25:
        return LeadQuality.cold
    return LeadQuality.unqualified


def compute_lead_score(inp: LeadScoreInput) -> LeadScore:
    factors = {
        "property_score": _clamp(inp.property_score, 0.0, 100.0) * W_PROPERTY,
        "engagement_score": engagement_points(inp.engagement_seconds),
        "source_score": SOURCE_POINTS[inp.channel],
        "qualification_score": qualification_points(inp.qualification),
        "competition_score": competition_points(inp.competing_leads),
    }
    score = round_half_up(_clamp(sum(factors.values()), 0.0, 100.0), 1)
    return LeadScore(score=score, quality=quality_for_score(score), factors=factors)


# -----------------------------
# Market heat
# -----------------------------
MARKET_BASELINE = 50.0


@dataclass(frozen=True)
class MarketHeatInput:
    total_properties: int
    active_listings: int
    avg_days_on_market: float
    price_change_percent: float
    leads_per_property: float
    conversion_rate: float  # percent


@dataclass(frozen=True)
class MarketHeatScore:
    score: float
    heat: MarketHeat
    explain: str


def heat_for_score(score: float) -> MarketHeat:
    if score >= 80:
        return MarketHeat.very_hot
    if score >= 60:
        return MarketHeat.hot
    if score >= 40:
        return MarketHeat.warm
    return MarketHeat.cold


def compute_market_heat(inp: MarketHeatInput) -> MarketHeatScore:
    score = MARKET_BASELINE
    parts: list[str] = []

    dom = inp.avg_days_on_market
    if dom < 7:
        dom_pts = 20
    elif dom < 14:
        dom_pts = 15
    elif dom < 30:
        dom_pts = 10
    elif dom < 60:
        dom_pts = 5
    else:
        dom_pts = 0
    score += dom_pts
    parts.append(f"dom={dom_pts:+d}")

    pc = inp.price_change_percent
    if pc > 5:
        price_pts = 15
    elif pc > 2:
        price_pts = 10
    elif pc > 0:
        price_pts = 5
    elif pc < -5:
        price_pts = -15
    elif pc < -2:
        price_pts = -10
    else:
        price_pts = 0
    score += price_pts
    parts.append(f"price={price_pts:+d}")

    lpp = inp.leads_per_property
    if lpp > 3:
        lead_pts = 15
    elif lpp > 2:
        lead_pts = 10
    elif lpp > 1:
        lead_pts = 5
    else:
        lead_pts = 0
    score += lead_pts
    parts.append(f"leads={lead_pts:+d}")

    if inp.conversion_rate > 20:
        conv_pts = 10
    elif inp.conversion_rate > 10:
        conv_pts = 5
    else:
        conv_pts = 0
    score += conv_pts
    parts.append(f"conversion={conv_pts:+d}")

    # Empty market has no meaningful inventory ratio.
    inv_pts = 0
    if inp.total_properties > 0:
        ratio = inp.active_listings / inp.total_properties
        if ratio < 0.05:
            inv_pts = 15
        elif ratio < 0.1:
            inv_pts = 10
        elif ratio < 0.15:
            inv_pts = 5
    score += inv_pts
    parts.append(f"inventory={inv_pts:+d}")

    score = round_half_up(_clamp(score, 0.0, 100.0), 1)
    return MarketHeatScore(score=score, heat=heat_for_score(score), explain=" | ".join(parts))


# -----------------------------
# Conversion probability
# -----------------------------
DEFAULT_BASE_CONVERSION_RATE = 15.0

QUALITY_MULTIPLIERS: dict[LeadQuality, float] = {
    LeadQuality.hot: 3.0,
    LeadQuality.warm: 1.5,
    LeadQuality.cold: 0.7,
    LeadQuality.unqualified: 0.2,
}

HEAT_MULTIPLIERS: dict[MarketHeat, float] = {
    MarketHeat.very_hot: 1.4,
    MarketHeat.hot: 1.2,
    MarketHeat.warm: 1.0,
    MarketHeat.cold: 0.8,
}


def predict_conversion_probability(
    *,
    quality: LeadQuality,
    property_score: float,
    market_heat: MarketHeat,
    historical_conversion_rate: float | None,
) -> float:
    p = historical_conversion_rate or DEFAULT_BASE_CONVERSION_RATE
    p *= QUALITY_MULTIPLIERS[quality]
    p *= 1 + (property_score - 50) / 100
    p *= HEAT_MULTIPLIERS[market_heat]
    return _clamp(round_half_up(p, 1), 0.0, 100.0)
