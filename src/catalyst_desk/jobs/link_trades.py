"""Link executed trades back to the approved suggestions they came from.

    catalyst-link --portfolio data/portfolio.json [--dry-run]

Trades are read from the snapshot's ``recent_trades``.  High-confidence matches
are linked automatically; the rest are printed for a human to confirm.  Each
trade and each suggestion is linked at most once per pass, best match first.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ..config import get_settings
from ..logging_utils import get_logger, setup_logging
from ..matching import MatchProposal, SuggestionMatcher
from ..models import SuggestionStatus, TradeRecord
from ..suggestion_store import SuggestionStore
from ..time_utils import ensure_utc, now as utc_now
from .scan_catalysts import load_portfolio

log = get_logger("jobs.link_trades")

LOOKBACK_DAYS = 30


@dataclass
class LinkResult:
    linked: List[MatchProposal] = field(default_factory=list)
    to_review: List[MatchProposal] = field(default_factory=list)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Link executed trades to approved suggestions")
    p.add_argument("--portfolio", required=True, help="JSON portfolio snapshot with recent_trades")
    p.add_argument("--dry-run", action="store_true", help="Report matches without linking")
    return p.parse_args(argv)


def link_pass(
    store: SuggestionStore,
    trades: Sequence[TradeRecord],
    matcher: Optional[SuggestionMatcher] = None,
    now: Optional[datetime] = None,
    dry_run: bool = False,
) -> LinkResult:
    matcher = matcher or SuggestionMatcher()
    now = now or utc_now()
    cutoff = now - timedelta(days=LOOKBACK_DAYS)
    approved = [
        s
        for s in store.list_by_status(SuggestionStatus.APPROVED)
        if s.reviewed_at is not None and ensure_utc(s.reviewed_at) >= cutoff
    ]
    matches = matcher.find_matches(trades, approved, exclude=store.linked_pairs())

    result = LinkResult()
    used_trades, used_suggestions = set(), set()
    for m in matches:
        if m.transaction_id in used_trades or m.suggestion_id in used_suggestions:
            continue
        if not m.auto_link:
            result.to_review.append(m)
            continue
        used_trades.add(m.transaction_id)
        used_suggestions.add(m.suggestion_id)
        if not dry_run:
            store.link_transaction(m.suggestion_id, m.transaction_id, m.confidence, auto=True, now=now)
        result.linked.append(m)

    log.info(
        "link_pass_complete trades=%d suggestions=%d linked=%d to_review=%d dry_run=%s",
        len(trades),
        len(approved),
        len(result.linked),
        len(result.to_review),
        dry_run,
    )
    return result


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging("link_trades", settings.log_level)
    try:
        trades = load_portfolio(args.portfolio).recent_trades
        store = SuggestionStore.open(settings.db_path)
        try:
            result = link_pass(store, trades, dry_run=args.dry_run)
        finally:
            store.close()
    except Exception as e:
        log.error("link_pass_fatal err=%s", str(e)[:200], exc_info=True)
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    verb = "would link" if args.dry_run else "linked"
    for m in result.linked:
        print(f"  {verb} {m.transaction_id} -> suggestion {m.suggestion_id} ({m.confidence:.0f}%)")
    for m in result.to_review:
        print(f"  review {m.transaction_id} -> suggestion {m.suggestion_id} ({m.confidence:.0f}%)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
