from datetime import datetime, timezone

import pytest

from catalyst_desk.market_hours import (
    get_market_info,
    get_market_mode,
    is_market_open,
    next_market_open,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestMarketMode:
    @pytest.mark.parametrize(
        "dt, expected",
        [
            (utc(2026, 3, 2, 3, 29), "CLOSED"),  # 08:59 IST
            (utc(2026, 3, 2, 3, 30), "PRE_OPEN"),  # 09:00 IST
            (utc(2026, 3, 2, 3, 45), "OPEN"),  # 09:15 IST
            (utc(2026, 3, 2, 4, 30), "OPEN"),
            (utc(2026, 3, 2, 10, 0), "POST_CLOSE"),  # 15:30 IST
            (utc(2026, 3, 2, 10, 30), "CLOSED"),  # 16:00 IST
            (utc(2026, 3, 7, 5, 0), "CLOSED"),  # Saturday
            (utc(2026, 3, 17, 5, 0), "CLOSED"),  # Holi
        ],
    )
    def test_modes(self, dt, expected):
        assert get_market_mode(dt) == expected

    def test_naive_datetime_is_utc(self):
        assert get_market_mode(datetime(2026, 3, 2, 4, 30)) == "OPEN"

    def test_is_market_open(self):
        assert is_market_open(utc(2026, 3, 2, 4, 30))
        assert not is_market_open(utc(2026, 3, 2, 3, 35))


class TestNextOpen:
    def test_same_day_before_open(self):
        assert next_market_open(utc(2026, 3, 2, 2, 0)) == utc(2026, 3, 2, 3, 45)

    def test_skips_weekend(self):
        assert next_market_open(utc(2026, 3, 6, 12, 0)) == utc(2026, 3, 9, 3, 45)

    def test_skips_holiday(self):
        assert next_market_open(utc(2026, 3, 16, 12, 0)) == utc(2026, 3, 18, 3, 45)


def test_market_info_when_closed():
    info = get_market_info(utc(2026, 3, 2, 12, 30))
    assert info["mode"] == "CLOSED"
    assert info["bot_mode"] == "WATCH"
    assert info["output_type"] == "watchlist"
    assert info["is_weekend"] is False
    assert info["next_open"] == "2026-03-03T03:45:00+00:00"
