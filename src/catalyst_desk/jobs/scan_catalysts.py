"""Run one catalyst scan pass over a headlines file.

News fetching happens upstream; this job reads what it produced::

    catalyst-scan --assets data/assets.json --headlines data/headlines.jsonl \
        --portfolio data/portfolio.json

``--headlines`` is JSONL with one headline per line and a ``keyword`` field
naming the asset it belongs to.  ``--portfolio`` is a snapshot of the catalyst
book (holdings, cash, recent trades); missing ADV figures are filled in from
market data.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import defaultdict
from typing import Dict, List, Optional

from ..classifier import CatalystClassifier
from ..config import GateConfig, get_settings
from ..logging_utils import get_logger, setup_logging
from ..market import PriceService
from ..market_validator import MarketValidator
from ..models import CatalystAsset, NewsItem, PortfolioContext, normalize_symbol
from ..opportunity_log import OpportunityLog
from ..pipeline import CatalystPipeline
from ..portfolio.advisor import SignalAdvisor
from ..portfolio.gate import PortfolioGate
from ..services.llm_providers import GeminiClient
from ..suggestion_store import SuggestionStore
from ..time_utils import SystemClock

log = get_logger("jobs.scan_catalysts")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Catalyst scan over a headlines file")
    p.add_argument("--assets", required=True, help="JSON list of tracked assets")
    p.add_argument("--headlines", required=True, help="JSONL headlines, one per line")
    p.add_argument("--portfolio", default="", help="JSON portfolio snapshot")
    return p.parse_args(argv)


def load_assets(path: str) -> List[CatalystAsset]:
    with open(path, "r", encoding="utf-8") as fh:
        raw = json.load(fh)
    return [CatalystAsset.from_dict(d) for d in raw]


def load_headlines(path: str) -> Dict[str, List[NewsItem]]:
    by_keyword: Dict[str, List[NewsItem]] = defaultdict(list)
    with open(path, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                d = json.loads(line)
            except json.JSONDecodeError as e:
                log.warning("headline_bad_line line=%d err=%s", lineno, e)
                continue
            keyword = d.get("keyword")
            if not keyword or not d.get("title"):
                continue
            by_keyword[keyword].append(NewsItem.from_dict(d))
    return dict(by_keyword)


def load_portfolio(path: str) -> PortfolioContext:
    if not path:
        return PortfolioContext()
    with open(path, "r", encoding="utf-8") as fh:
        return PortfolioContext.from_dict(json.load(fh))


def fill_adv(
    context: PortfolioContext, assets: List[CatalystAsset], prices: PriceService
) -> None:
    """Look up 10-day ADV for every tradable asset the snapshot does not cover."""
    for asset in assets:
        if not asset.ticker:
            continue
        symbol = normalize_symbol(asset.ticker)
        if symbol in context.adv_10d:
            continue
        adv = prices.get_average_daily_volume(asset.ticker)
        if adv:
            context.adv_10d[symbol] = adv


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging("scan_catalysts", settings.log_level)
    try:
        assets = load_assets(args.assets)
        headlines = load_headlines(args.headlines)
        context = load_portfolio(args.portfolio)

        client = GeminiClient(settings)
        clock = SystemClock()
        prices = PriceService(settings, clock=clock)
        fill_adv(context, assets, prices)

        gate_config = GateConfig.from_settings(settings)
        store = SuggestionStore.open(
            settings.db_path, suggestion_expiry_days=settings.suggestion_expiry_days
        )
        try:
            pipeline = CatalystPipeline(
                classifier=CatalystClassifier(client),
                advisor=SignalAdvisor(client, gate_config),
                gate=PortfolioGate(gate_config),
                store=store,
                opportunity_log=OpportunityLog(settings.opportunities_log_path),
                price_lookup=prices.get_current_price,
                settings=settings,
                clock=clock,
                market_validator=MarketValidator(prices.get_history, clock=clock),
            )
            summary = pipeline.scan(assets, headlines, context)
        finally:
            store.close()
    except Exception as e:
        log.error("scan_fatal err=%s", str(e)[:200], exc_info=True)
        print(f"Fatal: {e}", file=sys.stderr)
        return 1

    for outcome in summary.outcomes:
        line = f"  {outcome.keyword:<14} {outcome.status:<16}"
        if outcome.decision is not None:
            line += f" gate={outcome.decision.action.value} {outcome.decision.rationale}"
        elif outcome.detail:
            line += f" {outcome.detail}"
        print(line)
    print(
        f"Scanned {summary.scanned} | fired {summary.fired} | "
        f"suggestions {summary.suggestions} | errors {summary.errors}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
