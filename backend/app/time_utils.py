"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timezone


def require_utc(value: datetime | None, *, field_name: str = "timestamp") -> datetime | None:
    """Ensure ``value`` includes timezone info and return a UTC-normalized copy.

    Args:
        value: The datetime to validate.
        field_name: Human-readable name used in validation errors.

    Returns:
        A timezone-aware datetime normalized to UTC, or ``None`` if ``value`` is
        ``None``.

    Raises:
        ValueError: If ``value`` is timezone-naive.
    """

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{field_name} must include a timezone offset")

    return value.astimezone(timezone.utc)


def coerce_utc(value: datetime | None) -> datetime | None:
    """Return a UTC-normalized datetime, assuming naive values are already UTC."""

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def parse_timestamp(value: object, *, field_name: str = "timestamp") -> datetime:
    """Parse a client timestamp (ISO 8601 string or epoch milliseconds) to UTC.

    Raises:
        ValueError: If ``value`` cannot be interpreted as a point in time.
    """

    if isinstance(value, datetime):
        return coerce_utc(value)  # type: ignore[return-value]
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an ISO 8601 string or epoch milliseconds")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"{field_name} is not a valid ISO 8601 timestamp") from None
        return coerce_utc(parsed)  # type: ignore[return-value]
    raise ValueError(f"{field_name} must be an ISO 8601 string or epoch milliseconds")


def to_naive_utc(value: datetime) -> datetime:
    """Strip tzinfo after normalising to UTC, for naive DateTime columns."""

    return value.astimezone(timezone.utc).replace(tzinfo=None)
