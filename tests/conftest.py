from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import pytest

from config import AppSettings

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture(scope="function")
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,  # type: ignore[call-arg]
        query_retry_attempts=2,
        query_retry_backoff_seconds=0,
        http_rate_limit_retries=0,
    )
