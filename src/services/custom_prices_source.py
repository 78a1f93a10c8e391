from __future__ import annotations

import csv
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable

from utils.time_range import utc_now, validate_time_range

from .price_errors import MalformedRecordError
from .price_sources import PriceSource
from .price_types import FiatRecord
from .query_retry import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF_SECONDS, retry_query

logger = logging.getLogger(__name__)


def read_csv_rows(path: Path) -> list[list[str]]:
    with path.open("r", encoding="utf-8", newline="") as handle:
        return list(csv.reader(handle))


class CustomPricesSource(PriceSource):
    """Prices read from a headerless ``unix_seconds,price`` CSV file.

    The file does not name its currency; every record is tagged with the
    configured one. Any malformed row fails the whole read.
    """

    def __init__(
        self,
        *,
        csv_path: Path,
        currency: str,
        read_rows: Callable[[Path], list[list[str]]] = read_csv_rows,
        query_attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        log: logging.Logger | None = None,
    ) -> None:
        if not currency:
            msg = "currency must be provided"
            raise ValueError(msg)

        self.csv_path = csv_path
        self.currency = currency.upper()
        self.query_attempts = query_attempts
        self.backoff_seconds = backoff_seconds
        self._read_rows = read_rows
        self._clock = clock
        self._log = log or logger

    def get_prices(
        self, start: datetime, end: datetime, *, cancel: threading.Event | None = None
    ) -> list[FiatRecord]:
        validate_time_range(start, end, now=self._clock())
        records = self.raw_price_data(cancel=cancel)
        return sorted(records, key=lambda record: record.timestamp)

    def raw_price_data(self, *, cancel: threading.Event | None = None) -> list[FiatRecord]:
        """Read and parse every row of the file, keeping file order."""
        records = retry_query(
            lambda: self._read_rows(self.csv_path),
            self.parse_rows,
            attempts=self.query_attempts,
            backoff_seconds=self.backoff_seconds,
            cancel=cancel,
            log=self._log,
        )
        self._log.info("Loaded %d %s prices from %s", len(records), self.currency, self.csv_path)
        return records

    def parse_rows(self, rows: list[list[str]]) -> list[FiatRecord]:
        return [self._parse_row(line_number, row) for line_number, row in enumerate(rows, start=1)]

    def _parse_row(self, line_number: int, row: list[str]) -> FiatRecord:
        if len(row) != 2:
            msg = f"{self.csv_path}:{line_number}: expected 2 fields (timestamp, price), got {len(row)}"
            raise MalformedRecordError(msg, line_number=line_number)

        ts_raw, price_raw = (field.strip() for field in row)
        try:
            timestamp = datetime.fromtimestamp(int(ts_raw), tz=timezone.utc)
            price = Decimal(price_raw)
        except (ValueError, InvalidOperation, OverflowError, OSError) as exc:
            msg = f"{self.csv_path}:{line_number}: cannot parse {row!r}"
            raise MalformedRecordError(msg, line_number=line_number) from exc

        if not price.is_finite():
            msg = f"{self.csv_path}:{line_number}: price {price_raw!r} is not a finite number"
            raise MalformedRecordError(msg, line_number=line_number)

        return FiatRecord(timestamp=timestamp, price=price, currency=self.currency)


__all__ = ["CustomPricesSource", "read_csv_rows"]
