from __future__ import annotations

from datetime import datetime, timezone

from services.price_errors import InvalidRangeError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_time_range(
    start: datetime,
    end: datetime,
    *,
    allow_future: bool = False,
    now: datetime | None = None,
) -> None:
    """Check that start is not after end and, unless allowed, that end is not in the future."""
    if start > end:
        msg = f"start time {start.isoformat()} is after end time {end.isoformat()}"
        raise InvalidRangeError(msg)

    if allow_future:
        return

    current = now or utc_now()
    if end > current:
        msg = f"end time {end.isoformat()} is in the future (now {current.isoformat()})"
        raise InvalidRangeError(msg)


__all__ = ["utc_now", "validate_time_range"]
