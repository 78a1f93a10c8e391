from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from services.price_types import BackendKind, Granularity


class AppSettings(BaseSettings):
    price_backend: BackendKind = BackendKind.COINDESK
    price_granularity: Granularity | None = None
    fiat_currency: str = "USD"
    custom_prices_path: Path | None = None

    coindesk_history_url: str = "https://api.coindesk.com/v1/bpi/historical/close.json"
    coincap_base_url: str = "https://api.coincap.io/v2"
    coincap_api_key: str | None = None

    request_timeout_seconds: float = 10.0
    http_rate_limit_retries: int = 3
    query_retry_attempts: int = 3
    query_retry_backoff_seconds: float = 1.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("fiat_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if not code:
            raise ValueError("fiat_currency must not be empty")
        return code

    @field_validator("query_retry_attempts")
    @classmethod
    def _positive_attempts(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("query_retry_attempts must be > 0")
        return value


@cache
def config() -> AppSettings:
    return AppSettings()
