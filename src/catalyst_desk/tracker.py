"""Monitor potential catalysts until the market confirms them or they time out.

Each fired signal leaves a MONITORING row with watch criteria (a price or
volume move in the expected direction) and the tickers it should show up in.
Expiry runs on every pass; re-evaluation needs live prices and only runs while
the market is open.  A confirmation stores the confirming snapshot on the
originating signal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .logging_utils import get_logger
from .market_validator import MarketValidator, format_market_summary
from .models import MarketConfirmation, PotentialCatalyst, PotentialStatus, WatchCheck
from .suggestion_store import SuggestionStore
from .time_utils import Clock, SystemClock

log = get_logger("tracker")


@dataclass
class TrackerResult:
    checked: int = 0
    confirmed: int = 0
    expired: int = 0
    errors: int = 0


class CatalystTracker:
    def __init__(
        self,
        store: SuggestionStore,
        validator: MarketValidator,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.validator = validator
        self.clock = clock or SystemClock()

    def run(self, market_mode: str, now: Optional[datetime] = None) -> TrackerResult:
        now = now or self.clock.now()
        result = TrackerResult(expired=self.store.expire_potential_catalysts(now))
        if market_mode != "OPEN":
            log.info("tracker_skip_validation mode=%s expired=%d", market_mode, result.expired)
            return result

        for item in self.store.list_potential_catalysts(PotentialStatus.MONITORING):
            result.checked += 1
            try:
                if self.reevaluate(item, now):
                    result.confirmed += 1
            except Exception as e:
                result.errors += 1
                log.error(
                    "tracker_item_failed id=%s err=%s", item.id, str(e)[:200], exc_info=True
                )

        log.info(
            "tracker_complete checked=%d confirmed=%d expired=%d errors=%d",
            result.checked,
            result.confirmed,
            result.expired,
            result.errors,
        )
        return result

    def reevaluate(self, item: PotentialCatalyst, now: datetime) -> bool:
        """Check ``item`` against fresh market data; True when it was confirmed."""
        criteria = item.criteria
        snapshots = self.validator.validate_many(
            item.affected_symbols, criteria.expected_sentiment
        )

        checks: List[WatchCheck] = []
        confirmed: Optional[MarketConfirmation] = None
        best: Optional[MarketConfirmation] = None
        sign = 1.0 if criteria.direction == "UP" else -1.0
        for ticker, snap in snapshots.items():
            met = criteria.is_met(snap)
            checks.append(WatchCheck(now, ticker, snap.current_price, snap.price_change_pct, met))
            if met:
                confirmed = snap
                break
            if best is None or sign * snap.price_change_pct > sign * best.price_change_pct:
                best = snap

        if confirmed is not None:
            self.store.update_potential_catalyst(
                item.id, checks, PotentialStatus.CONFIRMED, now
            )
            if item.signal_id:
                self.store.set_signal_technical(item.signal_id, confirmed, now)
            log.info(
                "potential_confirmed id=%s symbol=%s %s",
                item.id,
                item.symbol,
                format_market_summary(confirmed),
            )
            return True

        self.store.update_potential_catalyst(item.id, checks, now=now)
        if best is not None:
            progress = sign * best.price_change_pct / criteria.threshold_pct * 100.0
            log.info(
                "potential_monitoring id=%s ticker=%s change=%.2f%% progress=%.0f%% target=%s%g%%",
                item.id,
                best.ticker,
                best.price_change_pct,
                progress,
                "+" if sign > 0 else "-",
                criteria.threshold_pct,
            )
        return False
