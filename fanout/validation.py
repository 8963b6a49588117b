"""Input validation utilities."""

import json
from datetime import datetime, timezone
from urllib.parse import urlparse

from fanout.errors import ValidationError

ALLOWED_SCHEMES = {"http", "https"}


def is_valid_url(url: str | None) -> bool:
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.netloc)


def validate_url(url: str | None) -> str:
    """Validate and return an endpoint URL, raising ValidationError if unusable."""
    if not url or not url.strip():
        raise ValidationError("URL is required")
    if not is_valid_url(url):
        raise ValidationError(f"Invalid endpoint URL: {url}")
    return url.strip()


def validate_headers(headers: dict | None) -> dict[str, str]:
    if headers is None:
        return {}
    if not isinstance(headers, dict):
        raise ValidationError("headers must be an object of name -> value")
    clean = {}
    for name, value in headers.items():
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Header names must be non-empty strings")
        clean[name.strip()] = str(value)
    return clean


def dump_headers(headers: dict | None) -> str:
    return json.dumps(headers or {})


def load_headers(raw: str | None) -> dict[str, str]:
    """Parse serialized headers. Unparseable text yields an empty mapping."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to the naive-UTC form stored in the database."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_date_range(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    if start is None or end is None:
        raise ValidationError("startDate and endDate are required")
    start, end = to_naive_utc(start), to_naive_utc(end)
    if start > end:
        raise ValidationError("startDate must not be after endDate")
    return start, end
