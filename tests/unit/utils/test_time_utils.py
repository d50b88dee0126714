"""Unit tests for timestamp parsing and the exchange session gate."""

from datetime import datetime, time, timedelta, timezone

import pytest

from src.utils.market_hours import MarketHours
from src.utils.timezone import parse_timestamp, to_iso, to_utc

UTC = timezone.utc


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "value",
        [
            "2024-01-15T09:15:00Z",
            "2024-01-15T09:15:00+00:00",
            "2024-01-15T14:45:00+05:30",
            "2024-01-15T09:15:00",
            1705310100,
            1705310100000,
            datetime(2024, 1, 15, 9, 15),
        ],
    )
    def test_forms_agree(self, value) -> None:
        assert parse_timestamp(value) == datetime(2024, 1, 15, 9, 15, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["yesterday", True, None, [1]])
    def test_rejects(self, value) -> None:
        with pytest.raises(ValueError):
            parse_timestamp(value)

    def test_iso_uses_z(self) -> None:
        assert to_iso(datetime(2024, 1, 15, 9, 15, tzinfo=UTC)) == "2024-01-15T09:15:00Z"

    def test_naive_assumed_utc(self) -> None:
        assert to_utc(datetime(2024, 1, 15, 9, 15)).tzinfo is UTC


class TestMarketHours:
    # Monday 2024-01-15; IST = UTC + 5:30
    @pytest.mark.parametrize(
        "utc_time, is_open",
        [
            (datetime(2024, 1, 15, 3, 44, tzinfo=UTC), False),
            (datetime(2024, 1, 15, 3, 45, tzinfo=UTC), True),
            (datetime(2024, 1, 15, 10, 0, 59, tzinfo=UTC), True),
            (datetime(2024, 1, 15, 10, 1, tzinfo=UTC), False),
            (datetime(2024, 1, 13, 5, 0, tzinfo=UTC), False),
        ],
    )
    def test_nse_session_bounds(self, utc_time, is_open) -> None:
        gate = MarketHours()
        assert gate.is_market_open(utc_time) is is_open
        assert gate.status(utc_time) == ("OPEN" if is_open else "CLOSED")

    def test_naive_datetime_is_utc(self) -> None:
        assert MarketHours().is_market_open(datetime(2024, 1, 15, 4, 0))

    def test_exchange_time(self) -> None:
        gate = MarketHours()
        local = gate.to_exchange_time(datetime(2024, 1, 15, 3, 45, tzinfo=UTC))
        assert (local.hour, local.minute) == (9, 15)
        assert local.utcoffset() == timedelta(hours=5, minutes=30)
        assert gate.format_exchange_time(datetime(2024, 1, 15, 5, 0, tzinfo=UTC)) == "2024-01-15 10:30:00 IST"

    def test_custom_session(self) -> None:
        gate = MarketHours(open_time=time(9, 0), close_time=time(23, 30), tz="Asia/Kolkata")
        assert gate.is_market_open(datetime(2024, 1, 15, 17, 0, tzinfo=UTC))

    def test_rejects_inverted_session(self) -> None:
        with pytest.raises(ValueError):
            MarketHours(open_time=time(16, 0), close_time=time(9, 0))
