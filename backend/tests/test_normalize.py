from datetime import datetime

from leadengine.domain.normalize import (
    format_flags,
    normalize_listing_status,
    normalize_property_type,
    parse_flags,
    realty_distress_flags,
    zillow_distress_flags,
)
from leadengine.domain.parsing import clean_url, get_nested, to_datetime, to_int, unique_urls
from leadengine.domain.types import DistressFlag, ListingStatus, PropertyType


def test_property_type_tables():
    assert normalize_property_type("realty_in_us", "single_family") == PropertyType.single_family
    assert normalize_property_type("realty_in_us", "Condos") == PropertyType.condo
    assert normalize_property_type("zillow", "SINGLE_FAMILY") == PropertyType.single_family
    assert normalize_property_type("zillow", "MULTI_FAMILY") == PropertyType.multi_family
    assert normalize_property_type("zillow", "LOT") == PropertyType.land


def test_unknown_values_fall_back():
    assert normalize_property_type("zillow", "castle") == PropertyType.other
    assert normalize_property_type("zillow", None) == PropertyType.other
    assert normalize_listing_status("realty_in_us", "mystery") == ListingStatus.active
    assert normalize_listing_status("realty_in_us", "") == ListingStatus.active


def test_listing_status_tables():
    assert normalize_listing_status("realty_in_us", "for_sale") == ListingStatus.active
    assert normalize_listing_status("realty_in_us", "contingent") == ListingStatus.pending
    assert normalize_listing_status("zillow", "RECENTLY_SOLD") == ListingStatus.sold
    assert normalize_listing_status("zillow", "FORECLOSED") == ListingStatus.active


def test_zillow_distress_from_home_status_and_tags():
    assert zillow_distress_flags("FORECLOSED", None) == {DistressFlag.foreclosure}
    assert zillow_distress_flags("PRE_FORECLOSURE", ["Short Sale"]) == {
        DistressFlag.foreclosure,
        DistressFlag.short_sale,
    }
    assert zillow_distress_flags("FOR_SALE", None) == frozenset()


def test_realty_distress_from_flags_and_tags():
    flags = {"is_foreclosure": True, "is_short_sale": False, "is_reo": True}
    assert realty_distress_flags(flags, ["auction"]) == {
        DistressFlag.foreclosure,
        DistressFlag.bank_owned,
        DistressFlag.auction,
    }
    # only literal True counts
    assert realty_distress_flags({"is_foreclosure": "yes"}, None) == frozenset()


def test_flags_storage_roundtrip_is_sorted():
    raw = format_flags({DistressFlag.short_sale, DistressFlag.auction})
    assert raw == "auction,short_sale"
    assert parse_flags(raw) == {DistressFlag.short_sale, DistressFlag.auction}
    assert format_flags(set()) is None
    assert parse_flags(None) == frozenset()


def test_parsing_helpers():
    payload = {"photos": [{"href": "https://a/1.jpg"}], "location": {"address": {"line": "1 Main"}}}
    assert get_nested(payload, "photos.0.href") == "https://a/1.jpg"
    assert get_nested(payload, "photos.3.href") is None
    assert get_nested(payload, "location.address.line") == "1 Main"
    assert to_int("1,200") is None
    assert to_int("3.0") == 3
    assert to_int(True) is None
    assert clean_url("//cdn.example.com/x.jpg") == "https://cdn.example.com/x.jpg"
    assert clean_url("/relative/x.jpg") is None
    assert unique_urls(["https://a/1.jpg", "", None, "https://a/1.jpg", "https://a/2.jpg"]) == (
        "https://a/1.jpg",
        "https://a/2.jpg",
    )
    assert to_datetime("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, 0, 0)
    assert to_datetime("not a date") is None
