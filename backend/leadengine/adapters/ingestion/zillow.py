# leadengine/adapters/ingestion/zillow.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from ...domain.normalize import normalize_listing_status, normalize_property_type, zillow_distress_flags
from ...domain.parsing import clean_url, get_first, to_float, to_int, to_str, unique_urls
from ...domain.types import GeoUnit, ListingRecord
from ...models import utcnow
from .base import RapidApiSourceAdapter

log = logging.getLogger(__name__)


class ZillowAdapter(RapidApiSourceAdapter):
    """
    Page-number paginated (1-based). The opaque page token is the next page number.
    """

    provider = "zillow"
    fetches_images = True

    def _request(self, geo_unit: GeoUnit, page_token: str | None) -> tuple[str, dict[str, Any]]:
        if geo_unit.city and geo_unit.zipcode:
            location = f"{geo_unit.city}, {geo_unit.state} {geo_unit.zipcode}"
        elif geo_unit.zipcode:
            location = geo_unit.zipcode
        else:
            location = f"{geo_unit.city}, {geo_unit.state}"
        return "search", {
            "location": location,
            "status": "forSale",
            "output": "json",
            "page": str(int(page_token or 1)),
        }

    def _next_token(self, page_token: str | None) -> str:
        return str(int(page_token or 1) + 1)

    def _extract_items(self, payload: Any) -> list[dict[str, Any]]:
        rows = None
        if isinstance(payload, dict):
            rows = payload.get("results")
            if rows is None:
                rows = payload.get("props")
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]

    def normalize(self, item: dict[str, Any], geo_unit: GeoUnit) -> ListingRecord | None:
        zpid = to_str(item.get("zpid"))
        address = to_str(get_first(item, "streetAddress", "address"))
        if not zpid or not address:
            return None

        hd = item.get("hdPhotos") if isinstance(item.get("hdPhotos"), list) else []
        image_urls = unique_urls([p.get("url") for p in hd if isinstance(p, dict)])
        if not image_urls:
            image_urls = unique_urls([item.get("imgSrc")])

        days = to_int(item.get("daysOnZillow"))
        listed_at = None
        if days is not None and days >= 0:
            # day granularity, so re-ingesting on the same day is a no-op
            listed_at = (utcnow() - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)

        detail = clean_url(item.get("detailUrl"))
        if detail is None and to_str(item.get("detailUrl")):
            detail = "https://www.zillow.com" + str(item["detailUrl"]).strip()

        return ListingRecord(
            provider=self.provider,
            provider_listing_id=zpid,
            address_line=address,
            city=to_str(get_first(item, "addressCity", "city")) or geo_unit.city or "",
            state=to_str(get_first(item, "addressState", "state")) or geo_unit.state or "",
            zipcode=to_str(get_first(item, "addressZipcode", "zipcode")) or geo_unit.zipcode or "",
            price=to_float(item.get("price")),
            beds=to_int(item.get("bedrooms")),
            baths=to_float(item.get("bathrooms")),
            sqft=to_int(item.get("livingArea")),
            property_type=normalize_property_type(self.provider, item.get("homeType")),
            listing_status=normalize_listing_status(self.provider, item.get("homeStatus")),
            lat=to_float(item.get("latitude")),
            lon=to_float(item.get("longitude")),
            primary_image=image_urls[0] if image_urls else None,
            listing_url=detail,
            virtual_tour_url=None,
            distressed_flags=zillow_distress_flags(item.get("homeStatus"), item.get("tags")),
            image_urls=image_urls,
            listed_at=listed_at,
        )

    async def fetch_images(self, record: ListingRecord) -> list[str]:
        """Full gallery for one listing. Falls back to the search-result photos on any failure."""
        res = await self._get("images", {"zpid": record.provider_listing_id})
        if not res.ok or not isinstance(res.payload, dict):
            log.info("zillow images zpid=%s unavailable (%s), using search photos", record.provider_listing_id, res.status.value)
            return list(record.image_urls)
        raw = res.payload.get("images")
        if not isinstance(raw, list):
            return list(record.image_urls)
        vals = [r if isinstance(r, str) else (r.get("url") or r.get("src")) for r in raw if isinstance(r, (str, dict))]
        urls = unique_urls(vals)
        return list(urls) if urls else list(record.image_urls)
