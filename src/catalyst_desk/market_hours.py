# -*- coding: utf-8 -*-
"""NSE market hours detection.

The market mode drives two things: whether the portfolio gate may approve an
automatic BUY at all (only in OPEN), and whether a freshly fired signal starts
``active`` or ``pending_market_open``.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Dict, Literal
from zoneinfo import ZoneInfo

MarketMode = Literal["PRE_OPEN", "OPEN", "POST_CLOSE", "CLOSED"]

# NSE trading holidays (2026), YYYY-MM-DD
NSE_HOLIDAYS_2026 = [
    "2026-01-26",  # Republic Day
    "2026-03-17",  # Holi
    "2026-04-06",  # Ram Navami
    "2026-04-10",  # Good Friday
    "2026-04-14",  # Ambedkar Jayanti
    "2026-04-21",  # Mahavir Jayanti
    "2026-05-01",  # Maharashtra Day
    "2026-07-17",  # Muharram
    "2026-08-15",  # Independence Day
    "2026-08-26",  # Ganesh Chaturthi
    "2026-09-25",  # Dussehra
    "2026-10-02",  # Gandhi Jayanti
    "2026-10-20",  # Diwali Laxmi Pujan
    "2026-10-21",  # Diwali Balipratipada
    "2026-11-09",  # Guru Nanak Jayanti
    "2026-11-10",
    "2026-11-27",
    "2026-12-25",  # Christmas
]

IST = ZoneInfo("Asia/Kolkata")

PRE_OPEN_START = time(9, 0)
REGULAR_START = time(9, 15)
REGULAR_END = time(15, 30)
POST_CLOSE_END = time(16, 0)


def _to_ist(dt: datetime | None) -> datetime:
    if dt is None:
        dt = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(IST)


def is_market_holiday(dt: datetime) -> bool:
    """True if ``dt`` (converted to IST) falls on an NSE holiday."""
    return _to_ist(dt).strftime("%Y-%m-%d") in NSE_HOLIDAYS_2026


def is_weekend(dt: datetime) -> bool:
    return _to_ist(dt).weekday() >= 5  # 5 = Saturday, 6 = Sunday


def is_trading_day(dt: datetime) -> bool:
    return not (is_weekend(dt) or is_market_holiday(dt))


def get_market_mode(dt: datetime | None = None) -> MarketMode:
    """
    Determine the NSE market mode.

    Market hours (IST):
    - Pre-open: 9:00 AM - 9:15 AM
    - Open: 9:15 AM - 3:30 PM
    - Post-close: 3:30 PM - 4:00 PM
    - Closed: otherwise, weekends and holidays

    Parameters
    ----------
    dt : datetime, optional
        The datetime to check. If None, uses current UTC time.
    """
    dt_ist = _to_ist(dt)
    if not is_trading_day(dt_ist):
        return "CLOSED"

    current = dt_ist.time()
    if PRE_OPEN_START <= current < REGULAR_START:
        return "PRE_OPEN"
    if REGULAR_START <= current < REGULAR_END:
        return "OPEN"
    if REGULAR_END <= current < POST_CLOSE_END:
        return "POST_CLOSE"
    return "CLOSED"


def is_market_open(dt: datetime | None = None) -> bool:
    return get_market_mode(dt) == "OPEN"


def next_market_open(dt: datetime | None = None) -> datetime:
    """Return the next regular-session open (09:15 IST) strictly after ``dt``, in UTC."""
    dt_ist = _to_ist(dt)
    candidate = dt_ist.replace(
        hour=REGULAR_START.hour, minute=REGULAR_START.minute, second=0, microsecond=0
    )
    if candidate <= dt_ist:
        candidate += timedelta(days=1)
    # Holidays never run longer than a couple of weeks; bound the scan anyway
    for _ in range(30):
        if is_trading_day(candidate):
            return candidate.astimezone(timezone.utc)
        candidate += timedelta(days=1)
    raise ValueError(f"no trading day found within 30 days of {dt_ist.isoformat()}")


def get_market_info(dt: datetime | None = None) -> Dict[str, object]:
    """
    Market mode descriptor consumed by the pipeline and reports.

    Returns
    -------
    Dict[str, object]
        - mode: MarketMode
        - bot_mode: "TRADE" when the gate may approve BUYs, else "WATCH"
        - output_type: "suggestions" or "watchlist"
        - is_weekend / is_holiday: bool
        - next_open: ISO timestamp of the next regular-session open
    """
    dt_ist = _to_ist(dt)
    mode = get_market_mode(dt_ist)
    trading = mode == "OPEN"
    return {
        "mode": mode,
        "bot_mode": "TRADE" if trading else "WATCH",
        "output_type": "suggestions" if trading else "watchlist",
        "is_weekend": is_weekend(dt_ist),
        "is_holiday": is_market_holiday(dt_ist),
        "next_open": next_market_open(dt_ist).isoformat(),
    }
