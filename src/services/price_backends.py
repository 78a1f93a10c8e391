from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

import requests

from config import AppSettings, config
from utils.time_range import utc_now

from .coincap_source import CoinCapSource
from .coindesk_source import CoinDeskSource
from .custom_prices_source import CustomPricesSource
from .price_errors import GranularityRequiredError, UnknownBackendError
from .price_sources import PriceSource, PriceSourceConfig
from .price_types import BackendKind

_USD_BACKENDS = frozenset({BackendKind.COINDESK, BackendKind.COINCAP})


def new_price_source(
    source_config: PriceSourceConfig,
    *,
    settings: AppSettings | None = None,
    session: requests.Session | None = None,
    clock: Callable[[], datetime] = utc_now,
    log: logging.Logger | None = None,
) -> PriceSource:
    """Instantiate the price source selected by ``source_config``.

    Configuration problems (missing granularity or custom prices path) are
    raised here rather than on the first query.
    """
    try:
        backend = BackendKind(source_config.backend)
    except ValueError as exc:
        msg = f"unknown price backend: {source_config.backend!r}"
        raise UnknownBackendError(msg) from exc

    if backend in _USD_BACKENDS and source_config.currency.upper() != "USD":
        msg = f"{backend.value} only quotes USD prices, got {source_config.currency}"
        raise ValueError(msg)

    resolved = settings or config()
    retry_options: dict[str, Any] = {
        "query_attempts": resolved.query_retry_attempts,
        "backoff_seconds": resolved.query_retry_backoff_seconds,
        "clock": clock,
        "log": log,
    }

    match backend:
        case BackendKind.COINDESK:
            return CoinDeskSource(
                history_url=resolved.coindesk_history_url,
                timeout=resolved.request_timeout_seconds,
                session=session,
                rate_limit_retries=resolved.http_rate_limit_retries,
                **retry_options,
            )
        case BackendKind.COINCAP:
            if source_config.granularity is None:
                raise GranularityRequiredError()
            return CoinCapSource(
                source_config.granularity,
                base_url=resolved.coincap_base_url,
                api_key=resolved.coincap_api_key,
                timeout=resolved.request_timeout_seconds,
                session=session,
                rate_limit_retries=resolved.http_rate_limit_retries,
                **retry_options,
            )
        case BackendKind.CUSTOM:
            if source_config.custom_prices_path is None:
                msg = "custom price backend requires a custom_prices_path"
                raise ValueError(msg)
            return CustomPricesSource(
                csv_path=source_config.custom_prices_path,
                currency=source_config.currency,
                **retry_options,
            )


__all__ = ["new_price_source"]
