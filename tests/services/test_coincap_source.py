from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

import pytest

from services.coincap_source import COINCAP_BASE_URL, COINCAP_HISTORY_PATH, CoinCapSource, parse_coincap_data
from services.price_errors import CoinCapAPIError, InvalidRangeError
from services.price_types import Granularity
from tests.helpers.http_mocks import mock_response, mock_session

JAN_1_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z


def _history(*entries: tuple[int, str]) -> dict[str, object]:
    return {"data": [{"priceUsd": price, "time": time_ms} for time_ms, price in entries]}


def test_parse_coincap_data_reads_millisecond_timestamps() -> None:
    body = json.dumps(_history((JAN_1_MS, "42000.123456789"), (JAN_1_MS + 60_000, "42001"))).encode()

    prices = parse_coincap_data(body)

    assert prices[0].timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert prices[0].price == Decimal("42000.123456789")
    assert prices[1].timestamp == datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)


def test_parse_coincap_data_rejects_missing_fields() -> None:
    body = json.dumps({"data": [{"time": JAN_1_MS}]}).encode()

    with pytest.raises(CoinCapAPIError):
        parse_coincap_data(body)


def test_parse_coincap_data_surfaces_api_errors() -> None:
    body = json.dumps({"error": "use a valid interval"}).encode()

    with pytest.raises(CoinCapAPIError, match="valid interval"):
        parse_coincap_data(body)


def test_get_prices_queries_interval_and_backdated_start(clock: Callable[[], datetime]) -> None:
    session = mock_session(mock_response(_history((JAN_1_MS, "100"))))
    source = CoinCapSource(Granularity.HOUR, session=session, clock=clock, backoff_seconds=0)
    start = datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc)
    end = datetime(2024, 1, 2, tzinfo=timezone.utc)

    prices = source.get_prices(start, end)

    assert [point.price for point in prices] == [Decimal("100")]
    args, kwargs = session.request.call_args
    assert args == ("GET", f"{COINCAP_BASE_URL}{COINCAP_HISTORY_PATH}")
    assert kwargs["params"] == {
        "interval": "h1",
        "start": JAN_1_MS,
        "end": JAN_1_MS + 24 * 3_600_000,
    }
    assert kwargs["headers"] is None


def test_get_prices_pages_ranges_longer_than_maximum_query(clock: Callable[[], datetime]) -> None:
    session = mock_session(
        mock_response(_history((JAN_1_MS + 3_600_000, "2"), (JAN_1_MS, "1"))),
        mock_response(_history((JAN_1_MS + 30 * 3_600_000, "3"))),
    )
    source = CoinCapSource(Granularity.MINUTE, session=session, clock=clock, backoff_seconds=0)
    start = datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)

    prices = source.get_prices(start, end)

    assert [point.price for point in prices] == [Decimal("1"), Decimal("2"), Decimal("3")]
    assert session.request.call_count == 2
    first, second = (call.kwargs["params"] for call in session.request.call_args_list)
    assert first["start"] == JAN_1_MS
    assert first["end"] == JAN_1_MS + 24 * 3_600_000
    assert second["start"] == first["end"]
    assert second["end"] == JAN_1_MS + 36 * 3_600_000


def test_pages_cover_range_without_gaps() -> None:
    source = CoinCapSource(Granularity.FIVE_MINUTES, session=mock_session())
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = start + timedelta(days=12)

    pages = list(source._pages(start, end))

    assert pages[0][0] == start
    assert pages[-1][1] == end
    assert all(page_end - page_start <= timedelta(days=5) for page_start, page_end in pages)
    assert all(prev[1] == nxt[0] for prev, nxt in zip(pages, pages[1:]))


def test_get_prices_sends_api_key(clock: Callable[[], datetime]) -> None:
    session = mock_session(mock_response(_history((JAN_1_MS, "1"))))
    source = CoinCapSource(Granularity.DAY, api_key="secret", session=session, clock=clock)
    ts = datetime(2024, 1, 3, tzinfo=timezone.utc)

    source.get_prices(ts, ts)

    assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer secret"}


def test_get_prices_rejects_inverted_range(clock: Callable[[], datetime]) -> None:
    session = mock_session()
    source = CoinCapSource(Granularity.DAY, session=session, clock=clock)

    with pytest.raises(InvalidRangeError):
        source.get_prices(datetime(2024, 1, 3, tzinfo=timezone.utc), datetime(2024, 1, 2, tzinfo=timezone.utc))

    session.request.assert_not_called()
