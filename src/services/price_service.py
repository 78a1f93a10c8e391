from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Iterable

import requests

from config import AppSettings
from domain.pricing import lookup_price, msat_to_fiat, sort_series
from utils.time_range import utc_now

from .price_backends import new_price_source
from .price_sources import PriceSourceConfig
from .price_types import FiatValue, PricePoint, PriceQuery

logger = logging.getLogger(__name__)


def get_prices(
    timestamps: Iterable[datetime],
    source_config: PriceSourceConfig,
    *,
    cancel: threading.Event | None = None,
    settings: AppSettings | None = None,
    session: requests.Session | None = None,
    clock: Callable[[], datetime] = utc_now,
    log: logging.Logger | None = None,
) -> dict[datetime, PricePoint]:
    """Price every timestamp with a single fetch from the selected backend.

    The covering range runs from the earliest to the latest timestamp. Each
    timestamp gets the last price at or before it. Any failure aborts the
    whole call; a partial mapping is never returned.
    """
    log = log or logger
    requested = list(timestamps)
    if not requested:
        return {}

    for timestamp in requested:
        if timestamp.tzinfo is None or timestamp.utcoffset() is None:
            msg = f"timestamp {timestamp.isoformat()} must be timezone-aware"
            raise ValueError(msg)

    ordered = sorted(requested)

    start, end = ordered[0], ordered[-1]
    log.debug("Getting %s prices for %d timestamps", source_config.backend, len(ordered))

    source = new_price_source(source_config, settings=settings, session=session, clock=clock, log=log)
    series = sort_series(source.get_prices(start, end, cancel=cancel))
    log.info(
        "Fetched %d %s prices covering %s..%s",
        len(series),
        source_config.backend,
        start.isoformat(),
        end.isoformat(),
    )

    return {timestamp: lookup_price(series, timestamp) for timestamp in ordered}


class FiatPriceService:
    """Prices BTC amounts against one configured backend."""

    def __init__(
        self,
        source_config: PriceSourceConfig,
        *,
        settings: AppSettings | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utc_now,
        log: logging.Logger | None = None,
    ) -> None:
        self.source_config = source_config
        self.settings = settings
        self._session = session
        self._clock = clock
        self._log = log or logger

    def get_prices(
        self, timestamps: Iterable[datetime], *, cancel: threading.Event | None = None
    ) -> dict[datetime, PricePoint]:
        return get_prices(
            timestamps,
            self.source_config,
            cancel=cancel,
            settings=self.settings,
            session=self._session,
            clock=self._clock,
            log=self._log,
        )

    def value_queries(
        self, queries: Iterable[PriceQuery], *, cancel: threading.Event | None = None
    ) -> dict[str, FiatValue]:
        """Convert each query's msat amount at its timestamp, keyed by identifier."""
        pending = list(queries)
        identifiers = [query.identifier for query in pending]
        if len(set(identifiers)) != len(identifiers):
            msg = "price query identifiers must be unique"
            raise ValueError(msg)

        prices = self.get_prices((query.timestamp for query in pending), cancel=cancel)
        return {
            query.identifier: FiatValue(
                query=query,
                price=prices[query.timestamp],
                value=msat_to_fiat(prices[query.timestamp].price, query.amount_msat),
            )
            for query in pending
        }


__all__ = ["FiatPriceService", "get_prices"]
