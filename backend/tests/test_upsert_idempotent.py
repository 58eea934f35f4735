import asyncio
from datetime import datetime, timedelta

from sqlalchemy import func, select

from leadengine.adapters.repos.listings import KeyedLocks, ListingRepository, ListingSink
from leadengine.domain.types import DistressFlag, ListingStatus
from leadengine.models import Property, PropertyImage


async def _images(session, property_id):
    q = select(PropertyImage).where(PropertyImage.property_id == property_id).order_by(PropertyImage.display_order)
    return list((await session.execute(q)).scalars().all())


async def test_upsert_twice_only_moves_last_seen(async_session_maker, make_record):
    record = make_record("100", image_urls=("https://img.example.com/100/0.jpg", "https://img.example.com/100/1.jpg"))
    t0 = datetime(2024, 5, 1, 12, 0, 0)
    t1 = t0 + timedelta(hours=6)

    async with async_session_maker() as session:
        first = await ListingRepository(session).upsert(record, list(record.image_urls), now=t0)
        await session.commit()
        images_before = [(i.id, i.image_url, i.display_order) for i in await _images(session, first.property_id)]

    async with async_session_maker() as session:
        second = await ListingRepository(session).upsert(record, list(record.image_urls), now=t1)
        await session.commit()

    assert first.created is True
    assert second.created is False
    assert second.changed is False
    assert first.property_id == second.property_id

    async with async_session_maker() as session:
        prop = await session.get(Property, first.property_id)
        assert prop.updated_at == t0
        assert prop.last_seen_at == t1
        # same rows, not a delete + reinsert
        images_after = [(i.id, i.image_url, i.display_order) for i in await _images(session, prop.id)]
        assert images_after == images_before
        count = (await session.execute(select(func.count(Property.id)))).scalar_one()
        assert count == 1


async def test_changed_field_bumps_updated_at(async_session_maker, make_record):
    t0 = datetime(2024, 5, 1)
    t1 = t0 + timedelta(days=1)
    async with async_session_maker() as session:
        repo = ListingRepository(session)
        r1 = await repo.upsert(make_record("7"), ["https://img.example.com/7/0.jpg"], now=t0)
        r2 = await repo.upsert(make_record("7", price=275000.0), ["https://img.example.com/7/0.jpg"], now=t1)
        await session.commit()
        prop = await session.get(Property, r1.property_id)

    assert r2.changed is True
    assert prop.price == 275000.0
    assert prop.updated_at == t1


async def test_missing_value_never_erases_stored_one(async_session_maker, make_record):
    async with async_session_maker() as session:
        repo = ListingRepository(session)
        r = await repo.upsert(make_record("8"), ["https://img.example.com/8/0.jpg"])
        again = await repo.upsert(make_record("8", price=None, sqft=None), ["https://img.example.com/8/0.jpg"])
        await session.commit()
        prop = await session.get(Property, r.property_id)

    assert again.changed is False
    assert prop.price == 300000.0
    assert prop.sqft == 1500


async def test_image_owned_by_other_listing_is_skipped(async_session_maker, make_record):
    shared = "https://img.example.com/shared.jpg"
    async with async_session_maker() as session:
        repo = ListingRepository(session)
        a = await repo.upsert(make_record("A"), [shared])
        b = await repo.upsert(make_record("B"), [shared, "https://img.example.com/B/1.jpg"])
        await session.commit()

        owners = (
            await session.execute(
                select(func.count(func.distinct(PropertyImage.property_id))).where(PropertyImage.image_url == shared)
            )
        ).scalar_one()
        b_images = [i.image_url for i in await _images(session, b.property_id)]

    assert a.images_attached == 1
    assert b.images_skipped == 1
    assert owners == 1
    assert b_images == ["https://img.example.com/B/1.jpg"]


async def test_new_listing_with_only_claimed_images_is_not_stored(async_session_maker, make_record):
    shared = "https://img.example.com/shared.jpg"
    async with async_session_maker() as session:
        repo = ListingRepository(session)
        await repo.upsert(make_record("A"), [shared])
        c = await repo.upsert(make_record("C"), [shared])
        await session.commit()

        stored = (await session.execute(select(Property.provider_listing_id).order_by(Property.id))).scalars().all()

    assert c.property_id is None
    assert c.created is False
    assert c.images_skipped == 1
    assert stored == ["A"]


async def test_distress_flags_and_status_are_stored(async_session_maker, make_record):
    record = make_record("D1", distressed_flags=frozenset({DistressFlag.short_sale, DistressFlag.auction}))
    async with async_session_maker() as session:
        r = await ListingRepository(session).upsert(record, list(record.image_urls))
        await session.commit()
        prop = await session.get(Property, r.property_id)

    assert prop.distressed_flags == "auction,short_sale"
    assert prop.listing_status == ListingStatus.active


async def test_sink_concurrent_writes_same_key_land_once(async_session_maker, make_record):
    sink = ListingSink(async_session_maker)
    records = [make_record("race", price=300000.0 + i) for i in range(5)]

    results = await asyncio.gather(*(sink.upsert(r, list(r.image_urls)) for r in records))

    assert sum(1 for r in results if r.created) == 1
    assert len({r.property_id for r in results}) == 1
    async with async_session_maker() as session:
        count = (await session.execute(select(func.count(Property.id)))).scalar_one()
        prop = (await session.execute(select(Property))).scalars().one()
    assert count == 1
    # last write wins
    assert prop.price == 300004.0


async def test_keyed_locks_are_dropped_after_use():
    locks = KeyedLocks()
    async with locks.hold(("p", "1")):
        assert len(locks) == 1
    assert len(locks) == 0
