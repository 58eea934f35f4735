# leadengine/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...config import settings
from ...db import AsyncSessionLocal
from ...integrations.base import Notifier
from ...integrations.notifier import build_notifier


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_notifier() -> Notifier:
    return build_notifier()


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Jobs that open their own sessions (monitoring) take the factory, not a session."""
    return AsyncSessionLocal
