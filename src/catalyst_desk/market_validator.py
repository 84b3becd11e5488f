"""Check a catalyst's sentiment against what the market is actually doing.

A confirmation is built from daily OHLCV history: the day's move against the
previous close, and the day's volume against the prior 10-day average.  The
latest bar's volume is still accumulating during the session, so the spike
threshold scales down early in the (UTC) day.

Missing data yields ``None``; callers treat that as "LLM-only signal".
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd

from .indicators import average_daily_volume
from .logging_utils import get_logger
from .models import CatalystAsset, MarketConfirmation, Sentiment
from .time_utils import Clock, SystemClock, ensure_utc

log = get_logger("market_validator")

VOLUME_SPIKE_RATIO = 1.5
STRONG_MOVE_PCT = 1.0
STRONG_VOLUME_RATIO = 2.0


def tickers_to_try(ticker: str) -> List[str]:
    """``ticker`` first, then the other Indian exchange listing if it has one."""
    t = (ticker or "").strip().upper()
    if not t:
        return []
    if t.endswith(".NS"):
        return [t, t[:-3] + ".BO"]
    if t.endswith(".BO"):
        return [t, t[:-3] + ".NS"]
    return [t]


def volume_spike_threshold(now: datetime) -> float:
    fraction = max(0.1, min(1.0, ensure_utc(now).hour / 16.0))
    return VOLUME_SPIKE_RATIO * fraction


def price_confirms(sentiment: Sentiment, change_pct: float) -> bool:
    if sentiment == Sentiment.BULLISH:
        return change_pct > 0
    if sentiment == Sentiment.BEARISH:
        return change_pct < 0
    return abs(change_pct) < 1.0


def confirm_from_history(
    ticker: str, df: Optional[pd.DataFrame], sentiment: Sentiment, now: datetime
) -> Optional[MarketConfirmation]:
    if df is None or "Close" not in df:
        return None
    closes = df["Close"].dropna()
    if len(closes) < 2 or closes.iloc[-2] <= 0 or closes.iloc[-1] <= 0:
        return None
    current = float(closes.iloc[-1])
    change = (current / float(closes.iloc[-2]) - 1.0) * 100.0

    current_volume = 0.0
    if "Volume" in df:
        volumes = df["Volume"].dropna()
        if not volumes.empty:
            current_volume = float(volumes.iloc[-1])
    average = average_daily_volume(df.iloc[:-1], days=10) or current_volume
    ratio = current_volume / average if average > 0 else 1.0

    return MarketConfirmation(
        ticker=ticker,
        current_price=round(current, 4),
        price_change_pct=round(change, 4),
        average_volume=float(average),
        current_volume=current_volume,
        volume_ratio=round(ratio, 4),
        volume_spike=ratio > volume_spike_threshold(now),
        is_trending=change > 0,
        price_confirms_sentiment=price_confirms(sentiment, change),
    )


def should_act_on_signal(confirmation: MarketConfirmation) -> bool:
    """True when price agrees and volume shows up, price moves hard, or volume surges."""
    c = confirmation
    if c.price_confirms_sentiment and c.volume_spike:
        return True
    if c.price_confirms_sentiment and abs(c.price_change_pct) > STRONG_MOVE_PCT:
        return True
    return c.volume_spike and c.volume_ratio > STRONG_VOLUME_RATIO


def format_market_summary(confirmation: MarketConfirmation) -> str:
    c = confirmation
    line = f"{c.ticker}: {c.price_change_pct:+.2f}%, vol {c.volume_ratio:.1f}x avg"
    return line + (" (spike)" if c.volume_spike else "")


class MarketValidator:
    def __init__(
        self,
        history_fn: Callable[[str, str], Optional[pd.DataFrame]],
        clock: Optional[Clock] = None,
        period: str = "1mo",
    ):
        self.history_fn = history_fn
        self.clock = clock or SystemClock()
        self.period = period

    def validate_ticker(
        self, ticker: str, sentiment: Sentiment
    ) -> Optional[MarketConfirmation]:
        candidates = tickers_to_try(ticker)
        for candidate in candidates:
            df = self.history_fn(candidate, self.period)
            confirmation = confirm_from_history(candidate, df, sentiment, self.clock.now())
            if confirmation is not None:
                return confirmation
        if candidates:
            log.warning(
                "market_confirmation_unavailable ticker=%s tried=%s",
                ticker,
                ",".join(candidates),
            )
        return None

    def validate(
        self, asset: CatalystAsset, sentiment: Sentiment
    ) -> Optional[MarketConfirmation]:
        ticker = asset.validation_ticker
        if not ticker:
            log.info("market_confirmation_skipped keyword=%s reason=no_ticker", asset.keyword)
            return None
        return self.validate_ticker(ticker, sentiment)

    def validate_many(
        self, tickers: Iterable[str], sentiment: Sentiment
    ) -> Dict[str, MarketConfirmation]:
        results: Dict[str, MarketConfirmation] = {}
        for ticker in tickers:
            confirmation = self.validate_ticker(ticker, sentiment)
            if confirmation is not None:
                results[ticker] = confirmation
        return results
