from __future__ import annotations

import threading
from unittest.mock import Mock

import pytest

from services.price_errors import (
    CoinCapAPIError,
    CoinDeskAPIError,
    InvalidRangeError,
    MalformedRecordError,
    QueryCancelledError,
)
from services.query_retry import is_transient, retry_query


def test_retry_query_returns_parsed_result() -> None:
    fetch = Mock(return_value=b"raw")
    parse = Mock(return_value=["parsed"])

    result = retry_query(fetch, parse, backoff_seconds=0)

    assert result == ["parsed"]
    fetch.assert_called_once_with()
    parse.assert_called_once_with(b"raw")


def test_retry_query_retries_transient_fetch_failures() -> None:
    fetch = Mock(side_effect=[CoinDeskAPIError("rate limited", status_code=429), ConnectionError("reset"), b"ok"])

    result = retry_query(fetch, lambda raw: raw.decode(), attempts=3, backoff_seconds=0)

    assert result == "ok"
    assert fetch.call_count == 3


def test_retry_query_retries_parse_failures() -> None:
    parse = Mock(side_effect=[CoinCapAPIError("CoinCap API returned invalid JSON"), [1, 2]])

    result = retry_query(lambda: b"{}", parse, attempts=2, backoff_seconds=0)

    assert result == [1, 2]
    assert parse.call_count == 2


def test_retry_query_reraises_last_error_when_exhausted() -> None:
    errors = [CoinDeskAPIError("first"), CoinDeskAPIError("second"), CoinDeskAPIError("third")]
    fetch = Mock(side_effect=errors)

    with pytest.raises(CoinDeskAPIError) as exc_info:
        retry_query(fetch, lambda raw: raw, attempts=3, backoff_seconds=0)

    assert exc_info.value is errors[-1]
    assert fetch.call_count == 3


def test_retry_query_does_not_retry_malformed_records() -> None:
    parse = Mock(side_effect=MalformedRecordError("bad row", line_number=3))
    fetch = Mock(return_value=[["1", "2", "3"]])

    with pytest.raises(MalformedRecordError):
        retry_query(fetch, parse, attempts=5, backoff_seconds=0)

    fetch.assert_called_once_with()


def test_retry_query_stops_when_cancelled_before_start() -> None:
    cancel = threading.Event()
    cancel.set()
    fetch = Mock(return_value=b"raw")

    with pytest.raises(QueryCancelledError):
        retry_query(fetch, lambda raw: raw, cancel=cancel)

    fetch.assert_not_called()


def test_retry_query_stops_during_backoff_when_cancelled() -> None:
    cancel = threading.Event()

    def failing_fetch() -> bytes:
        cancel.set()
        raise ConnectionError("network down")

    fetch = Mock(side_effect=failing_fetch)

    # A long backoff proves the wait is interrupted rather than slept through.
    with pytest.raises(QueryCancelledError):
        retry_query(fetch, lambda raw: raw, attempts=5, backoff_seconds=60, cancel=cancel)

    assert fetch.call_count == 1


def test_retry_query_rejects_non_positive_attempts() -> None:
    with pytest.raises(ValueError):
        retry_query(lambda: b"", lambda raw: raw, attempts=0)


def test_is_transient_classification() -> None:
    assert is_transient(CoinDeskAPIError("upstream"))
    assert is_transient(ConnectionError("reset"))
    assert not is_transient(InvalidRangeError("start after end"))
    assert not is_transient(MalformedRecordError("bad row"))
    assert not is_transient(FileNotFoundError("prices.csv"))
    assert not is_transient(TypeError("bad call"))


@pytest.mark.parametrize("error", [FileNotFoundError("prices.csv"), TypeError("bad call"), KeyError("time")])
def test_retry_query_does_not_retry_deterministic_errors(error: Exception) -> None:
    fetch = Mock(side_effect=error)

    with pytest.raises(type(error)):
        retry_query(fetch, lambda raw: raw, attempts=3, backoff_seconds=0)

    fetch.assert_called_once_with()
