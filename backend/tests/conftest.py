# tests/conftest.py
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from leadengine.domain.types import ListingRecord
from leadengine.integrations.base import DeliveryResult
from leadengine.models import Base, Property


@pytest.fixture
async def engine(tmp_path):
    """
    Fresh file-backed DB per test. Each session gets its own connection, so concurrent
    workers in a test behave like they do against a real database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
def no_sleep():
    async def _sleep(_seconds: float) -> None:
        return None

    return _sleep


@pytest.fixture
def make_record():
    def _make(listing_id: str = "1", **overrides: Any) -> ListingRecord:
        photo = f"https://img.example.com/{listing_id}/0.jpg"
        fields: dict[str, Any] = {
            "provider": "realty_in_us",
            "provider_listing_id": listing_id,
            "address_line": f"{listing_id} Main St",
            "city": "Tampa",
            "state": "FL",
            "zipcode": "33602",
            "price": 300000.0,
            "beds": 3,
            "baths": 2.0,
            "sqft": 1500,
            "primary_image": photo,
            "image_urls": (photo,),
        }
        fields.update(overrides)
        return ListingRecord(**fields)

    return _make


class RecordingNotifier:
    def __init__(self, ok: bool = True, raises: bool = False) -> None:
        self.ok = ok
        self.raises = raises
        self.calls: list[tuple[str, str, dict[str, Any] | None]] = []

    async def notify(self, title: str, content: str, details: dict[str, Any] | None = None) -> DeliveryResult:
        self.calls.append((title, content, details))
        if self.raises:
            raise RuntimeError("notifier down")
        return DeliveryResult(ok=self.ok, error=None if self.ok else "HTTP 503: unavailable")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(ok=False)


@pytest.fixture
def raising_notifier():
    return RecordingNotifier(raises=True)


@pytest.fixture
async def seeded_property(async_session_maker):
    async with async_session_maker() as session:
        p = Property(
            provider="realty_in_us",
            provider_listing_id="seed-1",
            address_line="123 Main St",
            city="Tampa",
            state="FL",
            zipcode="33602",
            price=250000.0,
            beds=3,
            baths=2.0,
            sqft=1500,
        )
        session.add(p)
        await session.commit()
        await session.refresh(p)
        return p
