import httpx
import pytest

from leadengine.adapters.clients.http_resilience import RetryPolicy
from leadengine.adapters.ingestion.registry import build_adapter
from leadengine.domain.types import DistressFlag, GeoUnit, ListingStatus, PageOutcome, PropertyType
from leadengine.errors import WorkerConfigError

POLICY = RetryPolicy(timeout_s=1.0, rate_limit_backoff_s=5.0, max_attempts=3, backoff_base_s=0.5)
UNIT = GeoUnit(zipcode="33602", city="Tampa", state="FL")


def _adapter(provider, handler, sleeps=None, page_size=2):
    async def sleep(s):
        if sleeps is not None:
            sleeps.append(s)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return build_adapter(provider, client, api_key="test-key", page_size=page_size, policy=POLICY, sleep=sleep)


def _realty_item(pid, address="1 Main St", **extra):
    item = {
        "property_id": pid,
        "list_price": 325000,
        "status": "for_sale",
        "href": "https://www.realtor.com/x",
        "list_date": "2024-04-01T00:00:00Z",
        "description": {"beds": 3, "baths": 2, "sqft": 1400, "type": "single_family"},
        "location": {"address": {"line": address, "city": "Tampa", "state_code": "FL", "postal_code": "33602"}},
        "photos": [{"href": f"https://ap.rdcpix.com/{pid}-0.jpg"}, {"href": f"https://ap.rdcpix.com/{pid}-1.jpg"}],
        "flags": {"is_foreclosure": True},
    }
    item.update(extra)
    return item


async def test_realty_first_page_and_normalization():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"properties": [_realty_item("r1"), {"property_id": "r2"}]})

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, None)

    req = seen[0]
    assert req.url.path == "/properties/v3/list"
    assert req.url.params["offset"] == "0"
    assert req.url.params["limit"] == "2"
    assert req.url.params["postal_code"] == "33602"
    assert req.headers["X-RapidAPI-Key"] == "test-key"

    assert page.outcome == PageOutcome.ok
    assert page.next_token == "2"
    assert page.raw_count == 2
    [rec] = page.records
    assert rec.provider_listing_id == "r1"
    assert rec.primary_image == "https://ap.rdcpix.com/r1-0.jpg"
    assert len(rec.image_urls) == 2
    assert rec.property_type == PropertyType.single_family
    assert rec.listing_status == ListingStatus.active
    assert rec.distressed_flags == {DistressFlag.foreclosure}
    assert rec.listed_at is not None


async def test_realty_next_token_is_offset():
    offsets = []

    def handler(request):
        offsets.append(request.url.params["offset"])
        return httpx.Response(200, json={"properties": [_realty_item("r9")]})

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, "4")
    assert offsets == ["4"]
    assert page.next_token == "6"


async def test_realty_primary_photo_fallback():
    item = _realty_item("r3", photos=[], primary_photo={"href": "https://ap.rdcpix.com/r3-p.jpg"})

    def handler(request):
        return httpx.Response(200, json={"data": {"home_search": {"results": [item]}}})

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, None)
    assert page.records[0].image_urls == ("https://ap.rdcpix.com/r3-p.jpg",)


async def test_empty_page_ends_pagination():
    def handler(request):
        return httpx.Response(200, json={"properties": []})

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, None)
    assert page.outcome == PageOutcome.empty
    assert page.next_token is None


async def test_429_then_success_retries_after_backoff():
    calls = {"n": 0}
    sleeps = []

    def handler(request):
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(429, json={"message": "Too many requests"})
        return httpx.Response(200, json={"properties": [_realty_item("r1")]})

    page = await _adapter("realty_in_us", handler, sleeps=sleeps).fetch_page(UNIT, None)

    assert page.outcome == PageOutcome.ok
    assert page.api_calls == 3
    assert sleeps == [5.0, 5.0]


async def test_429_exhausted_is_rate_limited_not_empty():
    sleeps = []

    def handler(request):
        return httpx.Response(429)

    page = await _adapter("realty_in_us", handler, sleeps=sleeps).fetch_page(UNIT, None)

    assert page.outcome == PageOutcome.rate_limited
    assert page.records == []
    assert page.api_calls == 3
    # no sleep after the last attempt
    assert sleeps == [5.0, 5.0]


async def test_transient_errors_back_off_exponentially():
    sleeps = []

    def handler(request):
        return httpx.Response(503)

    page = await _adapter("zillow", handler, sleeps=sleeps).fetch_page(UNIT, None)
    assert page.outcome == PageOutcome.http_error
    assert sleeps == [0.5, 1.0]


async def test_server_disconnect_is_retried_then_soft_fails():
    calls = {"n": 0}
    sleeps = []

    def handler(request):
        calls["n"] += 1
        raise httpx.RemoteProtocolError("Server disconnected without sending a response.", request=request)

    page = await _adapter("realty_in_us", handler, sleeps=sleeps).fetch_page(UNIT, None)
    assert page.outcome == PageOutcome.http_error
    assert page.records == []
    assert page.api_calls == 3
    assert calls["n"] == 3
    assert sleeps == [0.5, 1.0]


async def test_disconnect_then_success_recovers():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadError("connection reset", request=request)
        return httpx.Response(200, json={"properties": [_realty_item("r5")]})

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, None)
    assert page.outcome == PageOutcome.ok
    assert [r.provider_listing_id for r in page.records] == ["r5"]
    assert page.api_calls == 2


async def test_client_error_is_not_retried():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(404, text="not found")

    page = await _adapter("realty_in_us", handler).fetch_page(UNIT, None)
    assert page.outcome == PageOutcome.http_error
    assert calls["n"] == 1


async def test_zillow_page_number_and_normalization():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "zpid": 123,
                        "streetAddress": "9 Bay Dr",
                        "city": "Tampa",
                        "state": "FL",
                        "zipcode": "33602",
                        "price": 410000,
                        "bedrooms": 4,
                        "bathrooms": 3,
                        "livingArea": 2100,
                        "homeType": "SINGLE_FAMILY",
                        "homeStatus": "FORECLOSED",
                        "daysOnZillow": 3,
                        "detailUrl": "/homedetails/9-Bay-Dr/123_zpid/",
                        "hdPhotos": [{"url": "https://photos.zillowstatic.com/a.jpg"}],
                        "imgSrc": "https://photos.zillowstatic.com/thumb.jpg",
                    },
                    {"zpid": 124},
                ]
            },
        )

    page = await _adapter("zillow", handler).fetch_page(UNIT, "2")

    assert seen[0].url.path == "/search"
    assert seen[0].url.params["page"] == "2"
    assert seen[0].url.params["location"] == "Tampa, FL 33602"
    assert page.next_token == "3"
    assert page.raw_count == 2
    [rec] = page.records
    assert rec.provider_listing_id == "123"
    assert rec.listing_url == "https://www.zillow.com/homedetails/9-Bay-Dr/123_zpid/"
    assert rec.image_urls == ("https://photos.zillowstatic.com/a.jpg",)
    assert rec.distressed_flags == {DistressFlag.foreclosure}
    assert rec.listing_status == ListingStatus.active
    assert rec.listed_at.hour == 0 and rec.listed_at.minute == 0


async def test_zillow_images_fall_back_to_listing_photos(make_record):
    def handler(request):
        if request.url.path == "/images":
            return httpx.Response(500)
        raise AssertionError(request.url)

    adapter = _adapter("zillow", handler)
    record = make_record("123", provider="zillow")
    assert adapter.fetches_images is True
    assert await adapter.fetch_images(record) == list(record.image_urls)


async def test_zillow_images_full_gallery(make_record):
    def handler(request):
        assert request.url.params["zpid"] == "123"
        return httpx.Response(200, json={"images": ["https://p.z/1.jpg", {"url": "https://p.z/2.jpg"}, "https://p.z/1.jpg"]})

    images = await _adapter("zillow", handler).fetch_images(make_record("123", provider="zillow"))
    assert images == ["https://p.z/1.jpg", "https://p.z/2.jpg"]


def test_unknown_provider_and_missing_key_are_fatal():
    client = httpx.AsyncClient()
    with pytest.raises(WorkerConfigError):
        build_adapter("craigslist", client, api_key="k")
    with pytest.raises(WorkerConfigError):
        build_adapter("zillow", client, api_key="")
