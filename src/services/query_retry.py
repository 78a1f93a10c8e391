from __future__ import annotations

import logging
import threading
from typing import Callable, TypeVar

import requests

from .price_errors import PriceAPIError, QueryCancelledError

logger = logging.getLogger(__name__)

R = TypeVar("R")
T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


def is_transient(error: Exception) -> bool:
    """Upstream API failures and I/O errors are retried; everything else is deterministic."""
    if isinstance(error, PriceAPIError):
        return True
    if isinstance(error, FileNotFoundError):
        return False
    return isinstance(error, (OSError, requests.RequestException))


def retry_query(
    fetch: Callable[[], R],
    parse: Callable[[R], T],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    cancel: threading.Event | None = None,
    log: logging.Logger | None = None,
) -> T:
    """Run ``fetch`` then ``parse``, retrying transient failures with a linear backoff.

    The wait before retry ``n`` is ``backoff_seconds * n``. Setting ``cancel``
    stops the loop at the next attempt or during a backoff wait and raises
    ``QueryCancelledError``. When all attempts fail the last error is re-raised.
    """
    if attempts <= 0:
        msg = "attempts must be > 0"
        raise ValueError(msg)

    log = log or logger
    stop = cancel or threading.Event()
    attempt = 0

    while True:
        if stop.is_set():
            raise QueryCancelledError()

        attempt += 1
        try:
            return parse(fetch())
        except Exception as exc:
            if not is_transient(exc) or attempt >= attempts:
                raise
            delay = backoff_seconds * attempt
            log.warning("Price query attempt %d/%d failed: %s; retrying in %.1fs", attempt, attempts, exc, delay)

        if stop.wait(delay):
            raise QueryCancelledError()


__all__ = ["is_transient", "retry_query"]
