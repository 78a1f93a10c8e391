from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterator

import requests

from utils.time_range import utc_now, validate_time_range

from .price_errors import CoinCapAPIError
from .price_sources import PriceSource, build_session, fetch_content
from .price_types import Granularity, PricePoint
from .query_retry import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF_SECONDS, retry_query

logger = logging.getLogger(__name__)

COINCAP_BASE_URL = "https://api.coincap.io/v2"
COINCAP_HISTORY_PATH = "/assets/bitcoin/history"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_coincap_data(data: bytes) -> list[PricePoint]:
    """Parse a ``{"data": [{"priceUsd": "...", "time": <ms>}]}`` body."""
    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise CoinCapAPIError("CoinCap API returned invalid JSON", payload=data) from exc

    if not isinstance(payload, dict):
        raise CoinCapAPIError("CoinCap API returned unexpected payload type", payload=payload)

    if payload.get("error"):
        raise CoinCapAPIError(str(payload["error"]), payload=payload)

    entries = payload.get("data")
    if not isinstance(entries, list):
        raise CoinCapAPIError("CoinCap payload missing data list", payload=payload)

    return [_parse_entry(entry) for entry in entries]


def _parse_entry(entry: Any) -> PricePoint:
    if not isinstance(entry, dict):
        raise CoinCapAPIError("CoinCap history entry is not an object", payload=entry)

    time_raw = entry.get("time")
    price_raw = entry.get("priceUsd")
    if time_raw is None or price_raw is None:
        raise CoinCapAPIError("CoinCap history entry missing time or priceUsd field", payload=entry)

    try:
        timestamp = _EPOCH + timedelta(milliseconds=int(time_raw))
        price = Decimal(str(price_raw))
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise CoinCapAPIError("CoinCap history entry contains non-numeric values", payload=entry) from exc

    return PricePoint(timestamp=timestamp, price=price)


def _to_millis(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(milliseconds=1)


class CoinCapSource(PriceSource):
    """BTC/USD history from CoinCap at a configurable granularity."""

    def __init__(
        self,
        granularity: Granularity,
        *,
        base_url: str = COINCAP_BASE_URL,
        api_key: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        rate_limit_retries: int = 3,
        query_attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        log: logging.Logger | None = None,
    ) -> None:
        self.granularity = granularity
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.query_attempts = query_attempts
        self.backoff_seconds = backoff_seconds
        self._session = build_session(session, rate_limit_retries=rate_limit_retries)
        self._clock = clock
        self._log = log or logger

    def get_prices(
        self, start: datetime, end: datetime, *, cancel: threading.Event | None = None
    ) -> list[PricePoint]:
        validate_time_range(start, end, now=self._clock())

        # Step back one period so a price exists for timestamps inside the
        # first bucket of the range.
        query_start = start - self.granularity.aggregation

        records: list[PricePoint] = []
        for page_start, page_end in self._pages(query_start, end):
            page = retry_query(
                lambda: self._query(page_start, page_end),
                parse_coincap_data,
                attempts=self.query_attempts,
                backoff_seconds=self.backoff_seconds,
                cancel=cancel,
                log=self._log,
            )
            self._log.debug(
                "CoinCap page %s..%s returned %d prices", page_start.isoformat(), page_end.isoformat(), len(page)
            )
            records.extend(page)

        return sorted(records, key=lambda record: record.timestamp)

    def _pages(self, start: datetime, end: datetime) -> Iterator[tuple[datetime, datetime]]:
        """Split [start, end] into windows no longer than the granularity allows."""
        window = self.granularity.maximum_query
        page_start = start
        while True:
            page_end = min(page_start + window, end)
            yield page_start, page_end
            if page_end >= end:
                return
            page_start = page_end

    def _query(self, start: datetime, end: datetime) -> bytes:
        url = f"{self.base_url}{COINCAP_HISTORY_PATH}"
        params = {
            "interval": self.granularity.value,
            "start": _to_millis(start),
            "end": _to_millis(end),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        self._log.debug("CoinCap request url=%s params=%s", url, params)
        return fetch_content(
            self._session,
            url,
            error_cls=CoinCapAPIError,
            service="CoinCap",
            params=params,
            headers=headers,
            timeout=self.timeout,
        )


__all__ = ["COINCAP_BASE_URL", "COINCAP_HISTORY_PATH", "CoinCapSource", "parse_coincap_data"]
