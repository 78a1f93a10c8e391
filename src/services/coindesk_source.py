from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import requests

from utils.time_range import utc_now, validate_time_range

from .price_errors import CoinDeskAPIError
from .price_sources import PriceSource, build_session, fetch_content
from .price_types import PricePoint
from .query_retry import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF_SECONDS, retry_query

logger = logging.getLogger(__name__)

COINDESK_HISTORY_URL = "https://api.coindesk.com/v1/bpi/historical/close.json"
COINDESK_DATE_FORMAT = "%Y-%m-%d"


def parse_coindesk_data(data: bytes) -> list[PricePoint]:
    """Parse a ``{"bpi": {"YYYY-MM-DD": price}}`` body into price points at UTC midnight."""
    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise CoinDeskAPIError("CoinDesk API returned invalid JSON", payload=data) from exc

    if not isinstance(payload, dict):
        raise CoinDeskAPIError("CoinDesk API returned unexpected payload type", payload=payload)

    entries = payload.get("bpi")
    if not isinstance(entries, dict):
        raise CoinDeskAPIError("CoinDesk payload missing bpi price map", payload=payload)

    points: list[PricePoint] = []
    for date_raw, price_raw in entries.items():
        try:
            timestamp = datetime.strptime(date_raw, COINDESK_DATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError as exc:
            raise CoinDeskAPIError(f"CoinDesk returned malformed date {date_raw!r}", payload=payload) from exc
        points.append(PricePoint(timestamp=timestamp, price=_to_decimal(price_raw, payload)))
    return points


def _to_decimal(value: Any, payload: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CoinDeskAPIError(f"CoinDesk returned non-numeric price {value!r}", payload=payload)
    return Decimal(str(value))


class CoinDeskSource(PriceSource):
    """Daily BTC/USD close prices from the CoinDesk BPI history endpoint."""

    def __init__(
        self,
        *,
        history_url: str = COINDESK_HISTORY_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        rate_limit_retries: int = 3,
        query_attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        log: logging.Logger | None = None,
    ) -> None:
        self.history_url = history_url
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

        # The API has day granularity and omits the in-progress day, so go back
        # one day to always get at least one price.
        query_start = start - timedelta(days=1)

        records = retry_query(
            lambda: self._query(query_start, end),
            parse_coindesk_data,
            attempts=self.query_attempts,
            backoff_seconds=self.backoff_seconds,
            cancel=cancel,
            log=self._log,
        )

        # Expected sorted already, but the upstream ordering is not guaranteed.
        return sorted(records, key=lambda record: record.timestamp)

    def _query(self, start: datetime, end: datetime) -> bytes:
        params = {
            "start": start.astimezone(timezone.utc).strftime(COINDESK_DATE_FORMAT),
            "end": end.astimezone(timezone.utc).strftime(COINDESK_DATE_FORMAT),
        }
        self._log.debug("CoinDesk request url=%s params=%s", self.history_url, params)
        return fetch_content(
            self._session,
            self.history_url,
            error_cls=CoinDeskAPIError,
            service="CoinDesk",
            params=params,
            timeout=self.timeout,
        )


__all__ = ["COINDESK_DATE_FORMAT", "COINDESK_HISTORY_URL", "CoinDeskSource", "parse_coindesk_data"]
