"""Housekeeping pass over stored signals, suggestions and potential catalysts.

Expires signals, pending suggestions and potential catalysts past their
deadline, then, once the market is open, promotes ``pending_market_open``
signals to ``active`` and re-checks monitored catalysts against live prices.
Safe to run as often as the scheduler likes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..config import get_settings
from ..logging_utils import get_logger, setup_logging
from ..market import PriceService
from ..market_hours import get_market_mode
from ..market_validator import MarketValidator
from ..suggestion_store import SuggestionStore
from ..time_utils import now as utc_now
from ..tracker import CatalystTracker

log = get_logger("jobs.sweep")


@dataclass
class SweepResult:
    market_mode: str
    signals_expired: int = 0
    suggestions_expired: int = 0
    signals_activated: int = 0
    catalysts_expired: int = 0
    catalysts_confirmed: int = 0


def sweep(
    store: SuggestionStore,
    now: Optional[datetime] = None,
    tracker: Optional[CatalystTracker] = None,
) -> SweepResult:
    now = now or utc_now()
    result = SweepResult(market_mode=get_market_mode(now))
    result.signals_expired = store.expire_signals(now)
    result.suggestions_expired = store.expire_stale(now)
    if result.market_mode == "OPEN":
        result.signals_activated = store.activate_pending_signals(now)
    if tracker is not None:
        tracked = tracker.run(result.market_mode, now)
        result.catalysts_expired = tracked.expired
        result.catalysts_confirmed = tracked.confirmed
    else:
        result.catalysts_expired = store.expire_potential_catalysts(now)
    log.info(
        "sweep_complete mode=%s signals_expired=%d suggestions_expired=%d "
        "signals_activated=%d catalysts_expired=%d catalysts_confirmed=%d",
        result.market_mode,
        result.signals_expired,
        result.suggestions_expired,
        result.signals_activated,
        result.catalysts_expired,
        result.catalysts_confirmed,
    )
    return result


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    setup_logging("sweep", settings.log_level)
    try:
        store = SuggestionStore.open(
            settings.db_path, suggestion_expiry_days=settings.suggestion_expiry_days
        )
        try:
            prices = PriceService(settings)
            tracker = CatalystTracker(store, MarketValidator(prices.get_history))
            result = sweep(store, tracker=tracker)
        finally:
            store.close()
    except Exception as e:
        log.error("sweep_fatal err=%s", str(e)[:200], exc_info=True)
        return 1
    print(
        f"Market {result.market_mode}: expired {result.signals_expired} signals, "
        f"{result.suggestions_expired} suggestions, {result.catalysts_expired} catalysts; "
        f"activated {result.signals_activated} signals, "
        f"confirmed {result.catalysts_confirmed} catalysts"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
