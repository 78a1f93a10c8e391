from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, Sequence

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from .price_errors import PriceAPIError
from .price_types import BackendKind, Granularity, PricePoint

if TYPE_CHECKING:
    from config import AppSettings


class PriceSource(Protocol):
    def get_prices(
        self, start: datetime, end: datetime, *, cancel: threading.Event | None = None
    ) -> Sequence[PricePoint]: ...


@dataclass(frozen=True)
class PriceSourceConfig:
    """Validated backend selection handed to the price service."""

    backend: BackendKind
    granularity: Granularity | None = None
    currency: str = "USD"
    custom_prices_path: Path | None = None

    @classmethod
    def from_settings(cls, settings: AppSettings) -> PriceSourceConfig:
        return cls(
            backend=settings.price_backend,
            granularity=settings.price_granularity,
            currency=settings.fiat_currency,
            custom_prices_path=settings.custom_prices_path,
        )


def build_session(
    session: requests.Session | None = None,
    *,
    rate_limit_retries: int = 3,
    backoff_seconds: float = 1,
) -> requests.Session:
    """Return a session that transparently retries GETs answered with HTTP 429."""
    resolved = session or requests.Session()
    retry = Retry(
        total=rate_limit_retries,
        backoff_factor=backoff_seconds,
        status_forcelist={429},
        allowed_methods={"GET"},
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    resolved.mount("https://", adapter)
    resolved.mount("http://", adapter)
    return resolved


def fetch_content(
    session: requests.Session,
    url: str,
    *,
    error_cls: type[PriceAPIError],
    service: str,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 10.0,
) -> bytes:
    """GET ``url`` and return the raw body, wrapping transport failures in ``error_cls``."""
    try:
        response = session.request("GET", url, params=params, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.HTTPError as exc:
        resp = exc.response
        status_code = getattr(resp, "status_code", None)
        raise error_cls(
            f"{service} API request failed", status_code=status_code, payload=_extract_error(resp)
        ) from exc
    except requests.RequestException as exc:
        status_code = getattr(getattr(exc, "response", None), "status_code", None)
        raise error_cls(f"{service} API request failed", status_code=status_code) from exc

    return response.content


def _extract_error(response: Response | None) -> Any | None:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["PriceSource", "PriceSourceConfig", "build_session", "fetch_content"]
