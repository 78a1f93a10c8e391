from __future__ import annotations

from bisect import bisect_right
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Iterable, Sequence, TypeVar

from services.price_errors import NoPriceDataError, TimestampOutOfRangeError
from services.price_types import MAX_MSAT, PricePoint

P = TypeVar("P", bound=PricePoint)

# 1 BTC = 10^8 sat = 10^11 msat
MSAT_PER_BTC_EXPONENT = 11


def sort_series(points: Iterable[P]) -> list[P]:
    """Sort price points by ascending timestamp.

    Points sharing a timestamp collapse to the one that came last in ``points``.
    """
    latest: dict[datetime, P] = {}
    for point in points:
        latest[point.timestamp] = point
    return sorted(latest.values(), key=lambda point: point.timestamp)


def lookup_price(series: Sequence[P], timestamp: datetime) -> P:
    """Return the last point in ``series`` at or before ``timestamp``.

    ``series`` must be sorted ascending and start at or before ``timestamp``.
    A query that falls between two points gets the earlier one; the last
    point's timestamp may lie before the query.
    """
    if not series:
        raise NoPriceDataError()

    index = bisect_right(series, timestamp, key=lambda point: point.timestamp)
    if index == 0:
        msg = (
            f"timestamp {timestamp.isoformat()} before beginning of price dataset "
            f"({series[0].timestamp.isoformat()})"
        )
        raise TimestampOutOfRangeError(msg)

    return series[index - 1]


def msat_to_fiat(price: Decimal, amount_msat: int) -> Decimal:
    """Convert a msat amount to fiat given the price of one whole bitcoin.

    No rounding is applied; the local context is widened to hold every digit.
    """
    if not 0 <= amount_msat < MAX_MSAT:
        msg = f"amount_msat must fit in an unsigned 64-bit integer, got {amount_msat}"
        raise ValueError(msg)

    amount = Decimal(amount_msat)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _digit_count(price) + _digit_count(amount) + 1)
        price_per_msat = price.scaleb(-MSAT_PER_BTC_EXPONENT)
        return price_per_msat * amount


def _digit_count(value: Decimal) -> int:
    return len(value.as_tuple().digits)


__all__ = ["MSAT_PER_BTC_EXPONENT", "lookup_price", "msat_to_fiat", "sort_series"]
