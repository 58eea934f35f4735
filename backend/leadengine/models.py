# leadengine/models.py
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain.types import LeadChannel, LeadQuality, ListingStatus, MarketHeat, PropertyType


def utcnow() -> datetime:
    """Naive UTC, which is what SQLite DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# -----------------------------
# Core enums
# -----------------------------
class ImportRunStatus(str, enum.Enum):
    started = "started"
    completed = "completed"
    failed = "failed"
    partial = "partial"


class LeadStatus(str, enum.Enum):
    new = "new"
    contacted = "contacted"
    qualified = "qualified"
    converted = "converted"
    lost = "lost"


class AlertType(str, enum.Enum):
    high_lead_volume = "high_lead_volume"
    import_failed = "import_failed"
    market_heat_change = "market_heat_change"
    property_trending = "property_trending"
    low_conversion_rate = "low_conversion_rate"
    api_quota_warning = "api_quota_warning"


class AlertSeverity(str, enum.Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class AlertStatus(str, enum.Enum):
    new = "new"
    acknowledged = "acknowledged"
    resolved = "resolved"


class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Listings
# -----------------------------
class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("provider", "provider_listing_id", name="uq_property_natural_key"),
        Index("ix_property_market", "city", "state"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    provider: Mapped[str] = mapped_column(String(40))
    provider_listing_id: Mapped[str] = mapped_column(String(120))

    address_line: Mapped[str] = mapped_column(String(255))
    city: Mapped[str] = mapped_column(String(80))
    state: Mapped[str] = mapped_column(String(2))
    zipcode: Mapped[str] = mapped_column(String(10), index=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lon: Mapped[float | None] = mapped_column(Float, nullable=True)

    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    beds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    sqft: Mapped[int | None] = mapped_column(Integer, nullable=True)
    property_type: Mapped[PropertyType] = mapped_column(Enum(PropertyType), default=PropertyType.other)
    listing_status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus), default=ListingStatus.active, index=True
    )

    primary_image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    listing_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    virtual_tour_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # sorted, comma separated DistressFlag values
    distressed_flags: Mapped[str | None] = mapped_column(String(120), nullable=True)

    listed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class PropertyImage(Base):
    __tablename__ = "property_images"
    # one absolute URL belongs to at most one listing
    __table_args__ = (UniqueConstraint("image_url", name="uq_property_image_url"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)
    image_url: Mapped[str] = mapped_column(String(1024))
    display_order: Mapped[int] = mapped_column(Integer, default=0)


# -----------------------------
# Ingestion bookkeeping
# -----------------------------
class ImportRun(Base):
    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_run_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    worker_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    provider: Mapped[str] = mapped_column(String(40), index=True)
    geo_unit: Mapped[str] = mapped_column(String(200), index=True)

    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus), default=ImportRunStatus.started, index=True
    )

    properties_requested: Mapped[int] = mapped_column(Integer, default=0)
    properties_imported: Mapped[int] = mapped_column(Integer, default=0)
    properties_failed: Mapped[int] = mapped_column(Integer, default=0)
    properties_skipped: Mapped[int] = mapped_column(Integer, default=0)  # no photo
    success_rate: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    api_calls: Mapped[int] = mapped_column(Integer, default=0)
    pages_fetched: Mapped[int] = mapped_column(Integer, default=0)
    rate_limited: Mapped[bool] = mapped_column(Boolean, default=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_s: Mapped[float | None] = mapped_column(Float, nullable=True)


class JobRun(Base):
    """
    Tracks job executions (coordinator, scoring refresh, monitoring, off-market sweep).
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # optional metadata: {"workers": 4, "providers": [...]}
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)


# -----------------------------
# Engagement (raw scoring inputs)
# -----------------------------
class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)

    channel: Mapped[LeadChannel] = mapped_column(Enum(LeadChannel), default=LeadChannel.other)
    engagement_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    budget_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    budget_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    bedroom_need: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timeline_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pre_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[LeadStatus] = mapped_column(Enum(LeadStatus), default=LeadStatus.new, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class PropertyView(Base):
    __tablename__ = "property_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


# -----------------------------
# Derived analytics
# -----------------------------
class PropertyMetric(Base):
    __tablename__ = "property_metrics"
    __table_args__ = (UniqueConstraint("property_id", name="uq_property_metric_property"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)

    total_views: Mapped[int] = mapped_column(Integer, default=0)
    total_leads: Mapped[int] = mapped_column(Integer, default=0)
    total_conversions: Mapped[int] = mapped_column(Integer, default=0)

    view_to_lead_rate: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    lead_to_conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    avg_leads_per_day: Mapped[float] = mapped_column(Float, default=0.0)

    lead_score: Mapped[float] = mapped_column(Float, default=0.0, index=True)
    score_factors_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    market_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    market_percentile: Mapped[int | None] = mapped_column(Integer, nullable=True)
    city_average_score: Mapped[float] = mapped_column(Float, default=0.0)

    last_lead_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class LeadScoreRecord(Base):
    """Append-only. Re-scoring a lead writes a new row."""
    __tablename__ = "lead_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(Integer, index=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)

    score: Mapped[float] = mapped_column(Float, index=True)
    quality: Mapped[LeadQuality] = mapped_column(Enum(LeadQuality), index=True)
    lead_source: Mapped[str] = mapped_column(String(40))
    conversion_probability: Mapped[float] = mapped_column(Float, default=0.0)
    factors_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class MarketAnalytics(Base):
    __tablename__ = "market_analytics"
    __table_args__ = (UniqueConstraint("city", "state", name="uq_market_city_state"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    city: Mapped[str] = mapped_column(String(80))
    state: Mapped[str] = mapped_column(String(2))

    total_properties: Mapped[int] = mapped_column(Integer, default=0)
    active_listings: Mapped[int] = mapped_column(Integer, default=0)
    sold_listings: Mapped[int] = mapped_column(Integer, default=0)

    avg_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    median_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_change_percent: Mapped[float] = mapped_column(Float, default=0.0)
    avg_days_on_market: Mapped[float] = mapped_column(Float, default=0.0)

    total_leads: Mapped[int] = mapped_column(Integer, default=0)
    leads_per_property: Mapped[float] = mapped_column(Float, default=0.0)
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)  # percent

    market_heat: Mapped[MarketHeat] = mapped_column(Enum(MarketHeat), default=MarketHeat.warm, index=True)
    heat_score: Mapped[float] = mapped_column(Float, default=50.0)
    previous_heat_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    heat_change_percent: Mapped[float] = mapped_column(Float, default=0.0)
    explain: Mapped[str | None] = mapped_column(Text, nullable=True)

    period_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


# -----------------------------
# Alerts
# -----------------------------
class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        # at most one unresolved alert per (type, subject)
        Index(
            "uq_alert_open_subject",
            "alert_type",
            "subject",
            unique=True,
            sqlite_where=text("status != 'resolved'"),
            postgresql_where=text("status != 'resolved'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    alert_type: Mapped[AlertType] = mapped_column(Enum(AlertType), index=True)
    subject: Mapped[str] = mapped_column(String(200), index=True)  # "property:12" | "market:Tampa,FL" | "global"

    severity: Mapped[AlertSeverity] = mapped_column(Enum(AlertSeverity), default=AlertSeverity.info)
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[AlertStatus] = mapped_column(Enum(AlertStatus), default=AlertStatus.new, index=True)

    notified: Mapped[bool] = mapped_column(Boolean, default=False)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
