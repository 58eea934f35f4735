# leadengine/adapters/repos/listings.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Hashable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...domain.normalize import format_flags
from ...domain.parsing import unique_urls
from ...domain.types import ListingRecord
from ...models import Property, PropertyImage, utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    property_id: int | None  # None when the listing was not stored
    created: bool
    changed: bool  # any stored field or the image set differed
    images_attached: int
    images_skipped: int  # already attached to a different listing


def _mutable_fields(record: ListingRecord) -> dict[str, Any]:
    return {
        "address_line": record.address_line,
        "city": record.city,
        "state": record.state,
        "zipcode": record.zipcode,
        "price": record.price,
        "beds": record.beds,
        "baths": record.baths,
        "sqft": record.sqft,
        "lat": record.lat,
        "lon": record.lon,
        "property_type": record.property_type,
        "listing_status": record.listing_status,
        "primary_image": record.primary_image,
        "listing_url": record.listing_url,
        "virtual_tour_url": record.virtual_tour_url,
        "distressed_flags": format_flags(record.distressed_flags),
    }


# Providers drop these intermittently; a missing value never erases a stored one.
_KEEP_WHEN_MISSING = {"price", "beds", "baths", "sqft", "lat", "lon", "listing_url", "virtual_tour_url"}


class ListingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, provider: str, provider_listing_id: str) -> Property | None:
        q = select(Property).where(
            Property.provider == provider,
            Property.provider_listing_id == provider_listing_id,
        )
        return (await self.session.execute(q)).scalars().first()

    async def image_urls(self, property_id: int) -> list[str]:
        q = (
            select(PropertyImage.image_url)
            .where(PropertyImage.property_id == property_id)
            .order_by(PropertyImage.display_order, PropertyImage.id)
        )
        return list((await self.session.execute(q)).scalars().all())

    async def _claimed_elsewhere(self, urls: tuple[str, ...], property_id: int | None) -> set[str]:
        if not urls:
            return set()
        q = select(PropertyImage.image_url).where(PropertyImage.image_url.in_(urls))
        if property_id is not None:
            q = q.where(PropertyImage.property_id != property_id)
        return set((await self.session.execute(q)).scalars().all())

    async def upsert(
        self, record: ListingRecord, images: list[str], *, now: datetime | None = None
    ) -> UpsertResult:
        """
        Insert or update by (provider, provider_listing_id).

        Unchanged input only moves last_seen_at. The image set is replaced
        (delete then reinsert) only when the accepted ordered list differs from
        what is stored. URLs already attached to another listing are skipped;
        a new listing left with none of its images is not stored at all.
        """
        now = now or utcnow()
        fields = _mutable_fields(record)

        prop = await self.get_by_key(record.provider, record.provider_listing_id)
        created = prop is None
        changed = created
        wanted = unique_urls(list(images))

        if prop is None:
            taken = await self._claimed_elsewhere(wanted, None)
            if wanted and taken.issuperset(wanted):
                log.info(
                    "%s/%s: every image is attached to another listing, not storing",
                    record.provider, record.provider_listing_id,
                )
                return UpsertResult(
                    property_id=None, created=False, changed=False, images_attached=0, images_skipped=len(taken)
                )
            prop = Property(
                provider=record.provider,
                provider_listing_id=record.provider_listing_id,
                listed_at=record.listed_at,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.session.add(prop)
            await self.session.flush()
        else:
            for name, value in fields.items():
                if value is None and name in _KEEP_WHEN_MISSING:
                    continue
                if getattr(prop, name) != value:
                    setattr(prop, name, value)
                    changed = True
            if prop.listed_at is None and record.listed_at is not None:
                prop.listed_at = record.listed_at
                changed = True

        prop.last_seen_at = now

        taken = await self._claimed_elsewhere(wanted, prop.id)
        accepted = [u for u in wanted if u not in taken]
        if taken:
            log.info(
                "%s/%s: skipping %d image(s) already attached to another listing",
                record.provider, record.provider_listing_id, len(taken),
            )

        current = [] if created else await self.image_urls(prop.id)
        if accepted != current:
            if current:
                await self.session.execute(delete(PropertyImage).where(PropertyImage.property_id == prop.id))
            for i, url in enumerate(accepted):
                self.session.add(PropertyImage(property_id=prop.id, image_url=url, display_order=i))
            changed = True

        if changed and not created:
            prop.updated_at = now

        await self.session.flush()
        return UpsertResult(
            property_id=prop.id,
            created=created,
            changed=changed,
            images_attached=len(accepted),
            images_skipped=len(taken),
        )


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, list[Any]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class ListingSink:
    """
    Serializes writes per natural key inside this process and commits each
    record in its own session, so one bad record never poisons the rest of a page.
    An insert that loses a race against another writer is retried once as an update.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], locks: KeyedLocks | None = None):
        self._session_maker = session_maker
        self._locks = locks or KeyedLocks()

    async def upsert(self, record: ListingRecord, images: list[str]) -> UpsertResult:
        async with self._locks.hold(record.natural_key):
            for attempt in (1, 2):
                async with self._session_maker() as session:
                    try:
                        res = await ListingRepository(session).upsert(record, images)
                        await session.commit()
                        return res
                    except IntegrityError:
                        await session.rollback()
                        if attempt == 2:
                            raise
                        log.info(
                            "%s/%s: concurrent write detected, retrying as update",
                            record.provider, record.provider_listing_id,
                        )
        raise AssertionError("unreachable")
