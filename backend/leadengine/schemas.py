from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Channel = Literal["property_detail", "search", "email", "ad", "other"]


class AlertOut(BaseModel):
    id: int
    alert_type: str
    subject: str
    severity: str
    status: str
    title: str
    message: str
    details: dict | None = None
    notified: bool
    notified_at: datetime | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class LeadCreate(BaseModel):
    property_id: int
    channel: Channel = "other"
    engagement_seconds: float = Field(0.0, ge=0)
    budget_min: float | None = Field(default=None, ge=0)
    budget_max: float | None = Field(default=None, ge=0)
    bedroom_need: int | None = Field(default=None, ge=0)
    timeline_months: int | None = Field(default=None, ge=0)
    pre_approved: bool = False


class LeadScoreOut(BaseModel):
    id: int
    lead_id: int
    property_id: int
    score: float = Field(..., ge=0, le=100)
    quality: str
    lead_source: str
    conversion_probability: float
    factors: dict[str, float]
    created_at: datetime


class PropertyMetricOut(BaseModel):
    property_id: int
    total_views: int
    total_leads: int
    total_conversions: int
    view_to_lead_rate: float
    lead_to_conversion_rate: float
    avg_leads_per_day: float
    lead_score: float
    score_factors: dict[str, float] | None = None
    market_rank: int | None = None
    market_percentile: int | None = None
    city_average_score: float
    updated_at: datetime


class ViewOut(BaseModel):
    id: int
    property_id: int
    viewed_at: datetime


class ImportRunOut(BaseModel):
    id: int
    job_run_id: int | None = None
    worker_id: int | None = None
    provider: str
    geo_unit: str
    status: str
    properties_requested: int
    properties_imported: int
    properties_failed: int
    properties_skipped: int
    success_rate: float
    api_calls: int
    pages_fetched: int
    rate_limited: bool
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class JobSummary(BaseModel):
    job: str
    summary: dict
