"""Price lookups via yfinance.

``get_current_price`` is the boundary contract used by the verification engine
and the pipeline: it never raises and returns ``None`` when the ticker is
unknown or every attempt failed, which callers treat as "skip this
evaluation".  Network calls carry an explicit timeout and are retried with
exponential backoff up to a capped number of attempts.
"""

from __future__ import annotations

from typing import Callable, Optional

import pandas as pd
import yfinance as yf

from . import time_utils
from .cache import TTLCache
from .config import Settings, get_settings
from .errors import PriceLookupError
from .indicators import average_daily_volume
from .logging_utils import get_logger
from .time_utils import Clock, SystemClock

log = get_logger("market")


def _norm_ticker(ticker: Optional[str]) -> str:
    return (ticker or "").strip().upper()


def _download_history(ticker: str, period: str, timeout: float) -> pd.DataFrame:
    df = yf.Ticker(ticker).history(period=period, interval="1d", timeout=timeout)
    if df is None or df.empty:
        raise PriceLookupError(f"no data for {ticker}")
    return df


def get_history(
    ticker: str,
    period: str = "3mo",
    retries: Optional[int] = None,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time_utils.sleep,
) -> Optional[pd.DataFrame]:
    """
    Return daily OHLCV history for ``ticker`` or None.

    Empty results are treated as "not found" and are not retried; exceptions
    from yfinance (network, throttling) are retried with backoff
    ``0.5 * 2**attempt`` seconds.
    """
    nt = _norm_ticker(ticker)
    if not nt:
        return None
    settings = get_settings()
    attempts = max(1, retries if retries is not None else settings.price_max_retries)
    timeout = timeout if timeout is not None else settings.price_timeout_sec

    for attempt in range(attempts):
        try:
            return _download_history(nt, period, timeout)
        except PriceLookupError:
            log.info("price_not_found ticker=%s period=%s", nt, period)
            return None
        except Exception as e:  # yfinance surfaces requests/curl errors untyped
            if attempt < attempts - 1:
                delay = 0.5 * (2**attempt)
                log.warning(
                    "price_fetch_retry ticker=%s attempt=%d/%d retrying_in=%.1fs err=%s",
                    nt,
                    attempt + 1,
                    attempts,
                    delay,
                    str(e)[:200],
                )
                sleep(delay)
            else:
                log.warning(
                    "price_fetch_failed ticker=%s attempts=%d err=%s",
                    nt,
                    attempts,
                    str(e)[:200],
                )
    return None


def get_current_price(ticker: str, **kwargs) -> Optional[float]:
    """Best-effort last close for ``ticker``; None when unavailable."""
    df = get_history(ticker, period="5d", **kwargs)
    if df is None or "Close" not in df:
        return None
    closes = df["Close"].dropna()
    if closes.empty:
        return None
    price = float(closes.iloc[-1])
    return price if price > 0 else None


def get_average_daily_volume(ticker: str, days: int = 10, **kwargs) -> Optional[float]:
    """Trailing ``days`` average daily volume (ADV) for the liquidity guard."""
    df = get_history(ticker, period="1mo", **kwargs)
    return average_daily_volume(df, days=days)


class PriceService:
    """Cached facade over the module-level lookups.

    Prices and ADV are cached with per-source TTLs on an injected clock, so a
    single run never fetches the same ticker twice and staleness can be tested
    without sleeping.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time_utils.sleep,
    ):
        settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.retries = settings.price_max_retries
        self.timeout = settings.price_timeout_sec
        self._sleep = sleep
        self._prices = TTLCache(settings.price_cache_ttl_sec, self.clock, name="price")
        self._adv = TTLCache(settings.adv_cache_ttl_sec, self.clock, name="adv")

    def _kwargs(self):
        return {"retries": self.retries, "timeout": self.timeout, "sleep": self._sleep}

    def get_current_price(self, ticker: str) -> Optional[float]:
        nt = _norm_ticker(ticker)
        if not nt:
            return None
        return self._prices.get_or_load(nt, lambda: get_current_price(nt, **self._kwargs()))

    def get_average_daily_volume(self, ticker: str) -> Optional[float]:
        nt = _norm_ticker(ticker)
        if not nt:
            return None
        return self._adv.get_or_load(nt, lambda: get_average_daily_volume(nt, **self._kwargs()))

    def get_history(self, ticker: str, period: str = "3mo") -> Optional[pd.DataFrame]:
        return get_history(ticker, period=period, **self._kwargs())
