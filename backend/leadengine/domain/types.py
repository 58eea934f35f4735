# leadengine/domain/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PropertyType(str, Enum):
    single_family = "single_family"
    condo = "condo"
    townhouse = "townhouse"
    multi_family = "multi_family"
    land = "land"
    commercial = "commercial"
    other = "other"


class DistressFlag(str, Enum):
    foreclosure = "foreclosure"
    short_sale = "short_sale"
    auction = "auction"
    bank_owned = "bank_owned"


class ListingStatus(str, Enum):
    active = "active"
    pending = "pending"
    sold = "sold"
    off_market = "off_market"


class MarketHeat(str, Enum):
    cold = "cold"
    warm = "warm"
    hot = "hot"
    very_hot = "very_hot"


class LeadQuality(str, Enum):
    hot = "hot"
    warm = "warm"
    cold = "cold"
    unqualified = "unqualified"


class LeadChannel(str, Enum):
    property_detail = "property_detail"
    search = "search"
    email = "email"
    ad = "ad"
    other = "other"


class PageOutcome(str, Enum):
    ok = "ok"
    empty = "empty"
    rate_limited = "rate_limited"  # retries exhausted while still receiving 429
    http_error = "http_error"  # non-retryable status, transient errors exhausted, bad payload


@dataclass(frozen=True)
class GeoUnit:
    """A ZIP code or a city+state pair. ZIP units may still carry city/state for context."""

    zipcode: str | None = None
    city: str | None = None
    state: str | None = None

    def __post_init__(self) -> None:
        if not self.zipcode and not (self.city and self.state):
            raise ValueError("geo unit needs a zipcode or a city+state pair")

    @property
    def label(self) -> str:
        if self.zipcode and self.city:
            return f"{self.city}, {self.state} {self.zipcode}"
        if self.zipcode:
            return self.zipcode
        return f"{self.city}, {self.state}"

    def to_dict(self) -> dict[str, str | None]:
        return {"zipcode": self.zipcode, "city": self.city, "state": self.state}

    @classmethod
    def from_dict(cls, d: dict[str, str | None]) -> "GeoUnit":
        return cls(zipcode=d.get("zipcode"), city=d.get("city"), state=d.get("state"))


@dataclass(frozen=True)
class ListingRecord:
    """Canonical, provider-agnostic listing. Natural key is (provider, provider_listing_id)."""

    provider: str
    provider_listing_id: str
    address_line: str
    city: str
    state: str
    zipcode: str
    price: float | None = None
    beds: int | None = None
    baths: float | None = None
    sqft: int | None = None
    property_type: PropertyType = PropertyType.other
    listing_status: ListingStatus = ListingStatus.active
    lat: float | None = None
    lon: float | None = None
    primary_image: str | None = None
    listing_url: str | None = None
    virtual_tour_url: str | None = None
    distressed_flags: frozenset[DistressFlag] = field(default_factory=frozenset)
    image_urls: tuple[str, ...] = ()
    listed_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.provider, self.provider_listing_id)

    @property
    def is_distressed(self) -> bool:
        return bool(self.distressed_flags)


@dataclass(frozen=True)
class PageResult:
    records: list[ListingRecord]
    next_token: str | None
    outcome: PageOutcome
    api_calls: int = 1
    raw_count: int = 0  # items the provider returned, including ones we could not normalize
