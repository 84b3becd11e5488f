"""One scan pass: headlines in, audited signals and suggestions out.

For each tracked asset the pipeline filters headlines, classifies the batch,
fires a signal when the classifier is confident enough, logs it for later
verification, and runs the advisor and the portfolio gate.  Only the gate's
verdict turns into a suggestion; nothing here places an order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from .classifier import CatalystClassifier
from .config import Settings, get_settings
from .logging_utils import get_logger
from .market_hours import get_market_mode
from .market_validator import MarketValidator, format_market_summary, should_act_on_signal
from .models import (
    BatchResult,
    CatalystAsset,
    CatalystSignal,
    CatalystSuggestion,
    Decision,
    GateAction,
    MarketState,
    NewsItem,
    PortfolioContext,
    Sentiment,
    SignalStatus,
    SuggestionAction,
    WatchCriteria,
    normalize_symbol,
)
from .noise_filter import filter_noise
from .opportunity_log import OpportunityLog, new_entry_from_signal
from .portfolio.advisor import SignalAdvisor
from .portfolio.gate import PortfolioGate
from .suggestion_store import SuggestionStore
from .time_utils import Clock, SystemClock, ensure_utc

log = get_logger("pipeline")


@dataclass
class ScanOutcome:
    keyword: str
    status: str  # no_news | classifier_failed | not_catalyst | below_threshold | fired | error
    result: Optional[BatchResult] = None
    signal: Optional[CatalystSignal] = None
    decision: Optional[Decision] = None
    suggestion: Optional[CatalystSuggestion] = None
    log_entry_id: Optional[str] = None
    detail: str = ""


@dataclass
class ScanSummary:
    scanned: int = 0
    headlines: int = 0
    fired: int = 0
    suggestions: int = 0
    errors: int = 0
    outcomes: List[ScanOutcome] = field(default_factory=list)


class CatalystPipeline:
    def __init__(
        self,
        classifier: CatalystClassifier,
        advisor: Optional[SignalAdvisor],
        gate: PortfolioGate,
        store: SuggestionStore,
        opportunity_log: OpportunityLog,
        price_lookup: Callable[[str], Optional[float]],
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        market_mode_fn: Callable[[datetime], str] = get_market_mode,
        market_validator: Optional[MarketValidator] = None,
    ):
        self.classifier = classifier
        self.advisor = advisor
        self.gate = gate
        self.store = store
        self.opportunity_log = opportunity_log
        self.price_lookup = price_lookup
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.market_mode_fn = market_mode_fn
        self.market_validator = market_validator

    def _recent(self, headlines: Sequence[NewsItem], now: datetime) -> List[NewsItem]:
        cutoff = now - timedelta(hours=self.settings.news_max_age_hours)
        # Undated items are kept; the source already scoped them to a window
        return [
            h for h in headlines
            if h.published_at is None or ensure_utc(h.published_at) >= cutoff
        ]

    def _price(self, ticker: Optional[str]) -> Optional[float]:
        if not ticker:
            return None
        try:
            return self.price_lookup(ticker)
        except Exception as e:  # lookups are best-effort here
            log.warning("pipeline_price_failed ticker=%s err=%s", ticker, str(e)[:200])
            return None

    def _confirm(self, asset: CatalystAsset, sentiment: Sentiment):
        if self.market_validator is None:
            return None
        try:
            confirmation = self.market_validator.validate(asset, sentiment)
        except Exception as e:  # confirmation is advisory
            log.warning("market_confirmation_failed keyword=%s err=%s", asset.keyword, str(e)[:200])
            return None
        if confirmation is None:
            log.info("market_confirmation_missing keyword=%s llm_only=1", asset.keyword)
        else:
            log.info(
                "market_confirmation keyword=%s %s act=%s",
                asset.keyword,
                format_market_summary(confirmation),
                should_act_on_signal(confirmation),
            )
        return confirmation

    def _watch(self, asset: CatalystAsset, sentiment: Sentiment):
        criteria = WatchCriteria(
            metric="PRICE",
            direction="DOWN" if sentiment == Sentiment.BEARISH else "UP",
            threshold_pct=self.settings.watch_threshold_pct,
            timeout_hours=self.settings.watch_timeout_hours,
        )
        symbols: List[str] = []
        for ticker in [asset.ticker, *asset.related_tickers]:
            if ticker and ticker not in symbols:
                symbols.append(ticker)
        if not symbols and asset.validation_ticker:
            symbols.append(asset.validation_ticker)
        return criteria, symbols

    def scan_asset(
        self,
        asset: CatalystAsset,
        headlines: Sequence[NewsItem],
        context: PortfolioContext,
    ) -> ScanOutcome:
        now = self.clock.now()
        recent = self._recent(headlines, now)
        kept = filter_noise(recent)
        log.info(
            "scan_asset keyword=%s headlines=%d recent=%d after_noise=%d",
            asset.keyword,
            len(headlines),
            len(recent),
            len(kept),
        )
        if not kept:
            return ScanOutcome(asset.keyword, "no_news")

        result = self.classifier.analyze_batch(kept, asset)
        if result.failed:
            return ScanOutcome(asset.keyword, "classifier_failed", result, detail=result.reasoning)
        if not result.is_catalyst:
            return ScanOutcome(asset.keyword, "not_catalyst", result)
        if result.confidence < self.settings.confidence_threshold:
            return ScanOutcome(
                asset.keyword,
                "below_threshold",
                result,
                detail=f"confidence {result.confidence} < {self.settings.confidence_threshold}",
            )

        mode = self.market_mode_fn(now)
        key_item = next((h for h in kept if h.title == result.key_headline), kept[0])
        signal = CatalystSignal(
            id=str(uuid.uuid4()),
            keyword=asset.keyword,
            ticker=asset.ticker,
            headline=result.key_headline or key_item.title,
            source=key_item.source,
            published_at=key_item.published_at,
            sentiment=result.sentiment,
            impact_type=result.impact_type,
            confidence=result.confidence,
            summary=result.summary,
            reasoning=result.reasoning,
            is_catalyst=True,
            status=SignalStatus.ACTIVE if mode == "OPEN" else SignalStatus.PENDING_MARKET_OPEN,
            created_at=now,
            expires_at=now + timedelta(hours=self.settings.signal_expiry_hours),
            technical=self._confirm(asset, result.sentiment),
        )
        signal = self.store.save_signal(signal)
        criteria, watch_symbols = self._watch(asset, signal.sentiment)
        catalyst_id = self.store.record_potential_catalyst(
            symbol=asset.ticker or asset.keyword,
            headline=signal.headline,
            source=signal.source,
            signal_id=signal.id,
            detected_at=now,
            notes=result.summary,
            criteria=criteria,
            affected_symbols=watch_symbols,
        )
        log.info(
            "signal_fired id=%s keyword=%s sentiment=%s impact=%s confidence=%d status=%s",
            signal.id,
            signal.keyword,
            signal.sentiment.value,
            signal.impact_type.value,
            signal.confidence,
            signal.status.value,
        )

        technical = signal.technical
        global_ticker = asset.validation_ticker
        local_price = self._price(asset.ticker)
        base_price = (
            local_price if global_ticker == asset.ticker else self._price(global_ticker)
        )
        entry = new_entry_from_signal(
            signal,
            MarketState(
                global_ticker=global_ticker,
                base_price=base_price,
                price_change_pct=technical.price_change_pct if technical else None,
                volume_ratio=technical.volume_ratio if technical else None,
            ),
            local_ticker=asset.ticker if asset.ticker != global_ticker else None,
            local_base_price=local_price if asset.ticker != global_ticker else None,
            at=now,
        )
        self.opportunity_log.append(entry)

        proposal = None
        if self.advisor is not None and signal.sentiment == Sentiment.BULLISH and signal.ticker:
            proposal = self.advisor.propose(signal, context, mode, last_price=local_price)

        decision = self.gate.evaluate(signal, context, proposal, market_mode=mode, now=now)
        self.store.record_decision(decision)

        suggestion = None
        if decision.action in (GateAction.BUY, GateAction.HOLD):
            suggestion = self.store.propose(
                self._to_suggestion(decision, signal, catalyst_id), now=now
            )

        return ScanOutcome(
            asset.keyword,
            "fired",
            result,
            signal=signal,
            decision=decision,
            suggestion=suggestion,
            log_entry_id=entry.id,
        )

    @staticmethod
    def _to_suggestion(
        decision: Decision, signal: CatalystSignal, catalyst_id: int
    ) -> CatalystSuggestion:
        buy = decision.action == GateAction.BUY
        return CatalystSuggestion(
            symbol=normalize_symbol(decision.symbol),
            action=SuggestionAction.BUY if buy else SuggestionAction.WATCH,
            confidence=signal.confidence,
            entry_price=decision.entry_price,
            target_price=decision.target_price,
            stop_loss=decision.stop_loss,
            quantity=decision.quantity or None,
            allocation_amount=decision.cost or None,
            min_hold_hours=decision.min_hold_hours,
            max_hold_days=decision.max_hold_days,
            trailing_stop=decision.trailing_stop,
            entry_trigger="" if buy else "re-evaluate at market open",
            exit_plan=decision.exit_plan,
            risk_reward=decision.risk_reward,
            rationale=decision.rationale,
            catalyst_id=catalyst_id,
            signal_id=signal.id,
        )

    def scan(
        self,
        assets: Sequence[CatalystAsset],
        headlines_by_keyword: Dict[str, Sequence[NewsItem]],
        context: PortfolioContext,
    ) -> ScanSummary:
        """Scan every enabled asset; one asset's failure never stops the pass."""
        summary = ScanSummary()
        for asset in assets:
            if not asset.enabled:
                continue
            headlines = list(headlines_by_keyword.get(asset.keyword, []))
            summary.scanned += 1
            summary.headlines += len(headlines)
            try:
                outcome = self.scan_asset(asset, headlines, context)
            except Exception as e:
                log.error(
                    "scan_asset_failed keyword=%s err=%s", asset.keyword, str(e)[:200], exc_info=True
                )
                outcome = ScanOutcome(asset.keyword, "error", detail=str(e)[:200])
                summary.errors += 1
            if outcome.status == "fired":
                summary.fired += 1
            if outcome.suggestion is not None:
                summary.suggestions += 1
            summary.outcomes.append(outcome)

        log.info(
            "scan_complete scanned=%d headlines=%d fired=%d suggestions=%d errors=%d",
            summary.scanned,
            summary.headlines,
            summary.fired,
            summary.suggestions,
            summary.errors,
        )
        return summary
