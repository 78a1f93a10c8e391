from __future__ import annotations

from typing import Any


class FiatPriceError(Exception):
    """Base class for failures while obtaining fiat prices."""


class InvalidRangeError(FiatPriceError):
    pass


class GranularityRequiredError(FiatPriceError):
    def __init__(self, message: str = "granularity required when fiat prices are enabled") -> None:
        super().__init__(message)


class UnknownBackendError(FiatPriceError):
    pass


class MalformedRecordError(FiatPriceError):
    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class NoPriceDataError(FiatPriceError):
    def __init__(self, message: str = "no price data provided") -> None:
        super().__init__(message)


class TimestampOutOfRangeError(FiatPriceError):
    def __init__(self, message: str = "timestamp before beginning of price dataset") -> None:
        super().__init__(message)


class QueryCancelledError(FiatPriceError):
    def __init__(self, message: str = "price query cancelled") -> None:
        super().__init__(message)


class PriceAPIError(FiatPriceError):
    """Upstream request or payload failure. Treated as transient by the retry engine."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class CoinDeskAPIError(PriceAPIError):
    pass


class CoinCapAPIError(PriceAPIError):
    pass


__all__ = [
    "CoinCapAPIError",
    "CoinDeskAPIError",
    "FiatPriceError",
    "GranularityRequiredError",
    "InvalidRangeError",
    "MalformedRecordError",
    "NoPriceDataError",
    "PriceAPIError",
    "QueryCancelledError",
    "TimestampOutOfRangeError",
    "UnknownBackendError",
]
