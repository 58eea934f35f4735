# leadengine/domain/normalize.py
from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .types import DistressFlag, ListingStatus, PropertyType

log = logging.getLogger(__name__)

# Every provider gets its own explicit table. Keys are normalized with _key() before lookup;
# anything not listed falls through to the default and is logged once per value.

PROPERTY_TYPE_TABLES: dict[str, dict[str, PropertyType]] = {
    "realty_in_us": {
        "single_family": PropertyType.single_family,
        "condo": PropertyType.condo,
        "condos": PropertyType.condo,
        "coop": PropertyType.condo,
        "condop": PropertyType.condo,
        "condo_townhome_rowhome_coop": PropertyType.condo,
        "townhomes": PropertyType.townhouse,
        "townhouse": PropertyType.townhouse,
        "multi_family": PropertyType.multi_family,
        "duplex_triplex": PropertyType.multi_family,
        "apartment": PropertyType.multi_family,
        "land": PropertyType.land,
        "farm": PropertyType.land,
        "commercial": PropertyType.commercial,
        "mobile": PropertyType.other,
        "other": PropertyType.other,
    },
    "zillow": {
        "single_family": PropertyType.single_family,
        "condo": PropertyType.condo,
        "cooperative": PropertyType.condo,
        "townhouse": PropertyType.townhouse,
        "multi_family": PropertyType.multi_family,
        "apartment": PropertyType.multi_family,
        "lot": PropertyType.land,
        "land": PropertyType.land,
        "commercial": PropertyType.commercial,
        "manufactured": PropertyType.other,
        "home_type_unknown": PropertyType.other,
    },
}

LISTING_STATUS_TABLES: dict[str, dict[str, ListingStatus]] = {
    "realty_in_us": {
        "for_sale": ListingStatus.active,
        "ready_to_build": ListingStatus.active,
        "coming_soon": ListingStatus.active,
        "contingent": ListingStatus.pending,
        "pending": ListingStatus.pending,
        "sold": ListingStatus.sold,
        "off_market": ListingStatus.off_market,
    },
    "zillow": {
        "for_sale": ListingStatus.active,
        "coming_soon": ListingStatus.active,
        "foreclosed": ListingStatus.active,
        "pre_foreclosure": ListingStatus.active,
        "auction": ListingStatus.active,
        "bank_owned": ListingStatus.active,
        "reo": ListingStatus.active,
        "short_sale": ListingStatus.active,
        "pending": ListingStatus.pending,
        "under_contract": ListingStatus.pending,
        "sold": ListingStatus.sold,
        "recently_sold": ListingStatus.sold,
        "off_market": ListingStatus.off_market,
        "other": ListingStatus.off_market,
    },
}

# Zillow encodes distress in homeStatus; realty_in_us uses boolean flags (see below).
ZILLOW_STATUS_DISTRESS: dict[str, DistressFlag] = {
    "foreclosed": DistressFlag.foreclosure,
    "pre_foreclosure": DistressFlag.foreclosure,
    "auction": DistressFlag.auction,
    "bank_owned": DistressFlag.bank_owned,
    "reo": DistressFlag.bank_owned,
    "short_sale": DistressFlag.short_sale,
}

REALTY_FLAG_DISTRESS: dict[str, DistressFlag] = {
    "is_foreclosure": DistressFlag.foreclosure,
    "is_short_sale": DistressFlag.short_sale,
    "is_auction": DistressFlag.auction,
    "is_bank_owned": DistressFlag.bank_owned,
    "is_reo": DistressFlag.bank_owned,
}

# Shared free-form tag vocabulary, used as a fallback by both providers.
TAG_DISTRESS: dict[str, DistressFlag] = {
    "foreclosure": DistressFlag.foreclosure,
    "short_sale": DistressFlag.short_sale,
    "auction": DistressFlag.auction,
    "bank_owned": DistressFlag.bank_owned,
    "reo": DistressFlag.bank_owned,
}

_UNMAPPED_SEEN: set[tuple[str, str, str]] = set()


def _key(raw: object) -> str:
    s = str(raw).strip().lower()
    return re.sub(r"[\s/|-]+", "_", s)


def _note_unmapped(kind: str, provider: str, raw: object) -> None:
    marker = (kind, provider, _key(raw))
    if marker not in _UNMAPPED_SEEN:
        _UNMAPPED_SEEN.add(marker)
        log.warning("unmapped %s %r from provider=%s", kind, raw, provider)


def normalize_property_type(provider: str, raw: object) -> PropertyType:
    if raw is None or raw == "":
        return PropertyType.other
    table = PROPERTY_TYPE_TABLES.get(provider, {})
    hit = table.get(_key(raw))
    if hit is None:
        _note_unmapped("property_type", provider, raw)
        return PropertyType.other
    return hit


def normalize_listing_status(provider: str, raw: object) -> ListingStatus:
    if raw is None or raw == "":
        return ListingStatus.active
    table = LISTING_STATUS_TABLES.get(provider, {})
    hit = table.get(_key(raw))
    if hit is None:
        _note_unmapped("listing_status", provider, raw)
        return ListingStatus.active
    return hit


def _flags_from_tags(tags: Any) -> set[DistressFlag]:
    out: set[DistressFlag] = set()
    if not isinstance(tags, (list, tuple, set)):
        return out
    for t in tags:
        hit = TAG_DISTRESS.get(_key(t))
        if hit is not None:
            out.add(hit)
    return out


def realty_distress_flags(flags: Any, tags: Any) -> frozenset[DistressFlag]:
    out: set[DistressFlag] = set()
    if isinstance(flags, dict):
        for name, flag in REALTY_FLAG_DISTRESS.items():
            if flags.get(name) is True:
                out.add(flag)
    out |= _flags_from_tags(tags)
    return frozenset(out)


def zillow_distress_flags(home_status: Any, tags: Any) -> frozenset[DistressFlag]:
    out: set[DistressFlag] = set()
    if home_status:
        hit = ZILLOW_STATUS_DISTRESS.get(_key(home_status))
        if hit is not None:
            out.add(hit)
    out |= _flags_from_tags(tags)
    return frozenset(out)


def format_flags(flags: Iterable[DistressFlag]) -> str | None:
    """Stable storage form: sorted, comma separated. None when empty."""
    vals = sorted(f.value for f in flags)
    return ",".join(vals) if vals else None


def parse_flags(raw: str | None) -> frozenset[DistressFlag]:
    if not raw:
        return frozenset()
    return frozenset(DistressFlag(v) for v in raw.split(",") if v)
