"""Refresh the phased trailing stop for every approved BUY suggestion.

Positions are tracked from the time the suggestion was approved.  Each run
pulls fresh daily bars, advances the exit state and persists it on the
suggestion row; positions whose exit has fired are reported so a human can
act on them.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import pandas as pd

from ..config import GateConfig, get_settings
from ..logging_utils import get_logger, setup_logging
from ..market import PriceService
from ..models import CatalystSuggestion, ExitState, SuggestionAction, SuggestionStatus
from ..portfolio.exits import PhasedTrailingStop
from ..suggestion_store import SuggestionStore
from ..time_utils import now as utc_now

log = get_logger("jobs.refresh_exits")


@dataclass
class ExitUpdate:
    suggestion_id: int
    symbol: str
    state: Optional[ExitState]
    detail: str = ""


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Refresh trailing stops for open catalyst positions")
    p.add_argument(
        "--suffix",
        default=".NS",
        help="Exchange suffix appended to stored symbols for price lookups (default .NS)",
    )
    p.add_argument("--period", default="3mo", help="History window for indicators")
    return p.parse_args(argv)


def refresh_position(
    suggestion: CatalystSuggestion,
    engine: PhasedTrailingStop,
    history: Callable[[str], Optional[pd.DataFrame]],
    suffix: str,
    now: datetime,
) -> ExitUpdate:
    if suggestion.entry_price is None or suggestion.stop_loss is None:
        return ExitUpdate(suggestion.id, suggestion.symbol, None, "missing entry or stop")

    state = suggestion.exit_state
    if state is None:
        entered_at = suggestion.reviewed_at or suggestion.created_at or now
        state = engine.start(suggestion.entry_price, entered_at, suggestion.stop_loss)
    if state.exit_triggered:
        return ExitUpdate(suggestion.id, suggestion.symbol, state, "exit already triggered")

    df = history(f"{suggestion.symbol}{suffix}")
    if df is None or df.empty:
        return ExitUpdate(suggestion.id, suggestion.symbol, state, "no price history")

    plan = suggestion.exit_plan
    new_state = engine.update(
        state,
        df,
        now,
        min_hold_hours=suggestion.min_hold_hours or (plan.min_hold_hours if plan else None),
        max_hold_days=suggestion.max_hold_days or (plan.max_hold_days if plan else None),
    )
    return ExitUpdate(suggestion.id, suggestion.symbol, new_state)


def refresh_all(
    store: SuggestionStore,
    engine: PhasedTrailingStop,
    history: Callable[[str], Optional[pd.DataFrame]],
    suffix: str = ".NS",
    now: Optional[datetime] = None,
) -> List[ExitUpdate]:
    now = now or utc_now()
    updates: List[ExitUpdate] = []
    open_buys = store.list_by_status(SuggestionStatus.APPROVED, SuggestionAction.BUY)
    for suggestion in open_buys:
        try:
            update = refresh_position(suggestion, engine, history, suffix, now)
        except Exception as e:
            log.warning(
                "exit_refresh_failed id=%s symbol=%s err=%s",
                suggestion.id,
                suggestion.symbol,
                str(e)[:200],
                exc_info=True,
            )
            update = ExitUpdate(suggestion.id, suggestion.symbol, suggestion.exit_state, str(e)[:200])
        if update.state is not None and update.state != suggestion.exit_state:
            store.update_exit_state(suggestion.id, update.state)
        updates.append(update)

    fired = sum(1 for u in updates if u.state is not None and u.state.exit_triggered)
    log.info("exit_refresh_complete positions=%d exits=%d", len(updates), fired)
    return updates


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging("refresh_exits", settings.log_level)
    try:
        prices = PriceService(settings)
        engine = PhasedTrailingStop(GateConfig.from_settings(settings))
        store = SuggestionStore.open(settings.db_path)
        try:
            updates = refresh_all(
                store,
                engine,
                lambda ticker: prices.get_history(ticker, period=args.period),
                suffix=args.suffix,
            )
        finally:
            store.close()
    except Exception as e:
        log.error("exit_refresh_fatal err=%s", str(e)[:200], exc_info=True)
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    for u in updates:
        if u.state is None:
            print(f"  {u.symbol:<12} skipped: {u.detail}")
            continue
        flag = f"EXIT ({u.state.exit_reason})" if u.state.exit_triggered else "hold"
        print(
            f"  {u.symbol:<12} phase={u.state.phase} stop={u.state.trailing_stop:g} "
            f"close={u.state.last_close if u.state.last_close is not None else '-'} {flag}"
            + (f" [{u.detail}]" if u.detail else "")
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
