"""Utility helpers for Vibber."""

from __future__ import annotations

from datetime import UTC, datetime
from urllib.parse import urlparse


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def clean_name(raw: str | None, *, max_length: int) -> str:
    """Trim a display name and cut it to ``max_length`` characters."""
    return (raw or "").strip()[:max_length]


def is_http_url(raw: str | None) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    parsed = urlparse((raw or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
