from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import StrEnum

MAX_MSAT = 2**64


@dataclass(frozen=True)
class PricePoint:
    """BTC price at a single instant."""

    timestamp: datetime
    price: Decimal


@dataclass(frozen=True)
class FiatRecord(PricePoint):
    currency: str


@dataclass(frozen=True)
class PriceQuery:
    """An amount of BTC that should be priced at a point in time."""

    identifier: str
    amount_msat: int
    timestamp: datetime

    def __post_init__(self) -> None:
        if not 0 <= self.amount_msat < MAX_MSAT:
            msg = f"amount_msat must fit in an unsigned 64-bit integer, got {self.amount_msat}"
            raise ValueError(msg)


@dataclass(frozen=True)
class FiatValue:
    query: PriceQuery
    price: PricePoint
    value: Decimal


class BackendKind(StrEnum):
    COINDESK = "coindesk"
    COINCAP = "coincap"
    CUSTOM = "custom"


class Granularity(StrEnum):
    """CoinCap history intervals, valued by their API label."""

    MINUTE = "m1"
    FIVE_MINUTES = "m5"
    FIFTEEN_MINUTES = "m15"
    THIRTY_MINUTES = "m30"
    HOUR = "h1"
    SIX_HOURS = "h6"
    TWELVE_HOURS = "h12"
    DAY = "d1"

    @property
    def aggregation(self) -> timedelta:
        return _GRANULARITY_WINDOWS[self][0]

    @property
    def maximum_query(self) -> timedelta:
        return _GRANULARITY_WINDOWS[self][1]


# (aggregation period, longest range a single request may cover)
_GRANULARITY_WINDOWS: dict[Granularity, tuple[timedelta, timedelta]] = {
    Granularity.MINUTE: (timedelta(minutes=1), timedelta(days=1)),
    Granularity.FIVE_MINUTES: (timedelta(minutes=5), timedelta(days=5)),
    Granularity.FIFTEEN_MINUTES: (timedelta(minutes=15), timedelta(days=7)),
    Granularity.THIRTY_MINUTES: (timedelta(minutes=30), timedelta(days=14)),
    Granularity.HOUR: (timedelta(hours=1), timedelta(days=30)),
    Granularity.SIX_HOURS: (timedelta(hours=6), timedelta(days=183)),
    Granularity.TWELVE_HOURS: (timedelta(hours=12), timedelta(days=365)),
    Granularity.DAY: (timedelta(days=1), timedelta(days=7305)),
}


def best_granularity(duration: timedelta) -> Granularity:
    """Return the finest granularity that covers ``duration`` in a single query."""
    for granularity in Granularity:
        if duration <= granularity.maximum_query:
            return granularity

    msg = f"no granularity covers a range of {duration}"
    raise ValueError(msg)


__all__ = [
    "BackendKind",
    "FiatRecord",
    "FiatValue",
    "Granularity",
    "MAX_MSAT",
    "PricePoint",
    "PriceQuery",
    "best_granularity",
]
