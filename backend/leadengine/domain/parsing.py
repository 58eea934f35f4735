# leadengine/domain/parsing.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def to_int(x: Any) -> int | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return int(float(x))
    except (TypeError, ValueError):
        return None


def to_float(x: Any) -> float | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def to_str(x: Any) -> str | None:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


def get_first(payload: dict[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among dot-path keys."""
    for k in keys:
        v = get_nested(payload, k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def get_nested(payload: Any, path: str) -> Any:
    """Tiny dot-path getter: 'location.address.city'. Integer parts index into lists: 'photos.0.href'."""
    cur: Any = payload
    for part in path.split("."):
        if isinstance(cur, dict):
            cur = cur.get(part)
        elif isinstance(cur, list) and part.isdigit():
            idx = int(part)
            cur = cur[idx] if idx < len(cur) else None
        else:
            return None
        if cur is None:
            return None
    return cur


def clean_url(x: Any) -> str | None:
    """Absolute http(s) URL or None. Photo fields often carry '', 'null' or relative junk."""
    s = to_str(x)
    if not s:
        return None
    if s.startswith("//"):
        s = "https:" + s
    if not s.lower().startswith(("http://", "https://")):
        return None
    return s


def unique_urls(values: list[Any]) -> tuple[str, ...]:
    """Clean and de-duplicate while keeping first-seen order (display order)."""
    out: list[str] = []
    seen: set[str] = set()
    for v in values:
        u = clean_url(v)
        if u and u not in seen:
            seen.add(u)
            out.append(u)
    return tuple(out)


def to_datetime(x: Any) -> datetime | None:
    """ISO-8601 string -> naive UTC datetime. Anything unparseable is None."""
    s = to_str(x)
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
