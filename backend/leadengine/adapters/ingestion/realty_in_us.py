# leadengine/adapters/ingestion/realty_in_us.py
from __future__ import annotations

from typing import Any

from ...domain.normalize import normalize_listing_status, normalize_property_type, realty_distress_flags
from ...domain.parsing import clean_url, get_first, get_nested, to_datetime, to_float, to_int, to_str, unique_urls
from ...domain.types import GeoUnit, ListingRecord
from .base import RapidApiSourceAdapter


class RealtyInUsAdapter(RapidApiSourceAdapter):
    """
    Offset-paginated. The opaque page token is the next offset as a string.
    """

    provider = "realty_in_us"

    def _request(self, geo_unit: GeoUnit, page_token: str | None) -> tuple[str, dict[str, Any]]:
        params: dict[str, Any] = {
            "limit": self.page_size,
            "offset": int(page_token or 0),
            "sort": "relevance",
        }
        if geo_unit.zipcode:
            params["postal_code"] = geo_unit.zipcode
        if geo_unit.city:
            params["city"] = geo_unit.city
        if geo_unit.state:
            params["state_code"] = geo_unit.state
        return "properties/v3/list", params

    def _next_token(self, page_token: str | None) -> str:
        return str(int(page_token or 0) + self.page_size)

    def _extract_items(self, payload: Any) -> list[dict[str, Any]]:
        rows = None
        if isinstance(payload, dict):
            rows = payload.get("properties")
            if rows is None:
                rows = get_nested(payload, "data.home_search.results")
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]

    def normalize(self, item: dict[str, Any], geo_unit: GeoUnit) -> ListingRecord | None:
        listing_id = to_str(get_first(item, "property_id", "listing_id"))
        address = to_str(get_nested(item, "location.address.line"))
        if not listing_id or not address:
            return None

        photos = item.get("photos") if isinstance(item.get("photos"), list) else []
        image_urls = unique_urls([p.get("href") for p in photos if isinstance(p, dict)])
        primary = clean_url(get_nested(item, "primary_photo.href"))
        if not image_urls and primary:
            image_urls = (primary,)
        primary = image_urls[0] if image_urls else None

        tours = item.get("virtual_tours") if isinstance(item.get("virtual_tours"), list) else []
        tour = clean_url(tours[0].get("href")) if tours and isinstance(tours[0], dict) else None

        return ListingRecord(
            provider=self.provider,
            provider_listing_id=listing_id,
            address_line=address,
            city=to_str(get_nested(item, "location.address.city")) or geo_unit.city or "",
            state=to_str(get_nested(item, "location.address.state_code")) or geo_unit.state or "",
            zipcode=to_str(get_nested(item, "location.address.postal_code")) or geo_unit.zipcode or "",
            price=to_float(item.get("list_price")),
            beds=to_int(get_nested(item, "description.beds")),
            baths=to_float(get_nested(item, "description.baths")),
            sqft=to_int(get_nested(item, "description.sqft")),
            property_type=normalize_property_type(self.provider, get_nested(item, "description.type")),
            listing_status=normalize_listing_status(self.provider, item.get("status")),
            lat=to_float(get_nested(item, "location.address.coordinate.lat")),
            lon=to_float(get_nested(item, "location.address.coordinate.lon")),
            primary_image=primary,
            listing_url=clean_url(item.get("href")),
            virtual_tour_url=tour,
            distressed_flags=realty_distress_flags(item.get("flags"), item.get("tags")),
            image_urls=image_urls,
            listed_at=to_datetime(item.get("list_date")),
        )
