"""
Catalyst Verification Engine.

Scores every fired signal against real price movement at three fixed
checkpoints after it fired (1 hour, next session, 24 hours).  The verdict uses
the global reference ticker; a local-market ticker, when recorded, is reported
alongside for information only.

Failures are fail-open: a missing base price or a failed price fetch skips the
entry for this pass without marking the checkpoint, so the next scheduled pass
retries it.  Accuracy metrics are always recomputed from the log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from . import time_utils
from .logging_utils import get_logger
from .models import (
    CHECKPOINT_ORDER,
    CatalystVerificationMetrics,
    Checkpoint,
    CheckpointType,
    OpportunityLogEntry,
    Sentiment,
    Verdict,
    VerdictCounts,
)
from .opportunity_log import OpportunityLog, final_verdict
from .time_utils import Clock, SystemClock, ensure_utc

log = get_logger("verification")

# Percent moves smaller than this are NEUTRAL regardless of direction
NEUTRAL_BAND_PCT = 0.5


@dataclass(frozen=True)
class CheckpointWindow:
    checkpoint: CheckpointType
    min_minutes: int
    max_minutes: int
    label: str


# Disjoint eligible age windows, [min, max) minutes after the signal fired
CHECKPOINT_WINDOWS: List[CheckpointWindow] = [
    CheckpointWindow(CheckpointType.AFTER_1HR, 60, 180, "1 Hour"),
    CheckpointWindow(CheckpointType.NEXT_SESSION, 180, 720, "Next Session"),
    CheckpointWindow(CheckpointType.AFTER_24HR, 720, 2880, "24 Hours"),
]

WINDOW_BY_TYPE: Dict[CheckpointType, CheckpointWindow] = {
    w.checkpoint: w for w in CHECKPOINT_WINDOWS
}

# CLI names for a manual checkpoint override
CHECKPOINT_ALIASES: Dict[str, CheckpointType] = {
    "1hr": CheckpointType.AFTER_1HR,
    "session": CheckpointType.NEXT_SESSION,
    "24hr": CheckpointType.AFTER_24HR,
}


def percent_change(base: float, current: float) -> float:
    return (current - base) / base * 100.0


def compute_verdict(change_pct: float, sentiment: Sentiment) -> Verdict:
    """NEUTRAL inside the band, else GOOD_CALL when the move matches the prediction.

    BULLISH predicts a positive move; anything else predicts a negative one.
    """
    if abs(change_pct) < NEUTRAL_BAND_PCT:
        return Verdict.NEUTRAL
    predicted_up = sentiment == Sentiment.BULLISH
    return Verdict.GOOD_CALL if (change_pct > 0) == predicted_up else Verdict.BAD_CALL


def entry_age_minutes(entry: OpportunityLogEntry, now: datetime) -> float:
    return (ensure_utc(now) - ensure_utc(entry.timestamp)).total_seconds() / 60.0


def due_checkpoint(entry: OpportunityLogEntry, now: datetime) -> Optional[CheckpointType]:
    """Checkpoint whose window contains the entry's age, unless already evaluated."""
    age = entry_age_minutes(entry, now)
    for window in CHECKPOINT_WINDOWS:
        if window.min_minutes <= age < window.max_minutes:
            if window.checkpoint in entry.checkpoints:
                return None
            return window.checkpoint
    return None


@dataclass
class VerificationResult:
    entry_id: str
    keyword: str
    checkpoint: Optional[CheckpointType]
    status: str  # recorded | dry_run | not_ready | already_done | skipped | failed
    result: Optional[Checkpoint] = None
    detail: str = ""


@dataclass
class VerificationSummary:
    checked: int = 0
    skipped: int = 0
    not_ready: int = 0
    failed: int = 0
    results: List[VerificationResult] = field(default_factory=list)


class VerificationEngine:
    def __init__(
        self,
        price_lookup: Callable[[str], Optional[float]],
        opportunity_log: OpportunityLog,
        clock: Optional[Clock] = None,
        fetch_delay_sec: float = 0.5,
        sleep: Callable[[float], None] = time_utils.sleep,
    ):
        self.price_lookup = price_lookup
        self.log = opportunity_log
        self.clock = clock or SystemClock()
        self.fetch_delay_sec = fetch_delay_sec
        self._sleep = sleep
        self._fetches = 0

    def _fetch(self, ticker: str) -> Optional[float]:
        # Politeness delay between sequential price calls
        if self._fetches and self.fetch_delay_sec > 0:
            self._sleep(self.fetch_delay_sec)
        self._fetches += 1
        price = self.price_lookup(ticker)
        if price is None or price <= 0:
            return None
        return float(price)

    def verify(
        self, entry: OpportunityLogEntry, checkpoint: CheckpointType
    ) -> Optional[Checkpoint]:
        """Evaluate one checkpoint; None means "try again on a later pass"."""
        ticker = entry.market_state.global_ticker
        base = entry.market_state.base_price
        if not ticker or not base:
            log.info(
                "verification_skip id=%s checkpoint=%s reason=no_base_price",
                entry.id,
                checkpoint.value,
            )
            return None

        price = self._fetch(ticker)
        if price is None:
            log.info(
                "verification_skip id=%s checkpoint=%s ticker=%s reason=price_unavailable",
                entry.id,
                checkpoint.value,
                ticker,
            )
            return None

        change = percent_change(base, price)
        verdict = compute_verdict(change, entry.prediction.sentiment)

        local_price = None
        local_change = None
        if entry.local_ticker and entry.local_base_price:
            local_price = self._fetch(entry.local_ticker)
            if local_price is not None:
                local_change = round(percent_change(entry.local_base_price, local_price), 2)

        return Checkpoint(
            checked_at=self.clock.now(),
            price=price,
            price_change_pct=round(change, 2),
            verdict=verdict,
            local_price=local_price,
            local_change_pct=local_change,
        )

    def run_pass(
        self,
        checkpoint: Optional[CheckpointType] = None,
        min_age_minutes: float = 60,
        dry_run: bool = False,
        on_result: Optional[Callable[[VerificationResult], None]] = None,
    ) -> VerificationSummary:
        """Evaluate every due entry once; failures are isolated per entry."""
        summary = VerificationSummary()
        now = self.clock.now()
        entries = self.log.read_all()

        for entry in entries:
            result = self._process(entry, now, checkpoint, min_age_minutes, dry_run)
            summary.results.append(result)
            if result.status in ("recorded", "dry_run"):
                summary.checked += 1
            elif result.status == "failed":
                summary.failed += 1
            elif result.status == "skipped":
                summary.skipped += 1
            else:
                summary.not_ready += 1
            if on_result is not None:
                on_result(result)

        log.info(
            "verification_pass_complete entries=%d checked=%d skipped=%d not_ready=%d failed=%d dry_run=%s",
            len(entries),
            summary.checked,
            summary.skipped,
            summary.not_ready,
            summary.failed,
            dry_run,
        )
        return summary

    def _process(
        self,
        entry: OpportunityLogEntry,
        now: datetime,
        override: Optional[CheckpointType],
        min_age_minutes: float,
        dry_run: bool,
    ) -> VerificationResult:
        age = entry_age_minutes(entry, now)
        if age < min_age_minutes:
            return VerificationResult(entry.id, entry.keyword, None, "not_ready", detail=f"age {age:.0f}m")

        ct = override or due_checkpoint(entry, now)
        if ct is None:
            return VerificationResult(entry.id, entry.keyword, None, "not_ready", detail=f"age {age:.0f}m")
        if ct in entry.checkpoints:
            return VerificationResult(entry.id, entry.keyword, ct, "already_done")
        order = CHECKPOINT_ORDER.index(ct)
        if any(CHECKPOINT_ORDER.index(done) > order for done in entry.checkpoints):
            return VerificationResult(entry.id, entry.keyword, ct, "already_done", detail="later checkpoint recorded")

        try:
            cp = self.verify(entry, ct)
        except Exception as e:  # isolate per entry; the rest of the pass continues
            log.warning(
                "verification_failed id=%s checkpoint=%s err=%s",
                entry.id,
                ct.value,
                str(e)[:200],
                exc_info=True,
            )
            return VerificationResult(entry.id, entry.keyword, ct, "failed", detail=str(e)[:200])

        if cp is None:
            return VerificationResult(entry.id, entry.keyword, ct, "skipped", detail="no price")
        if dry_run:
            return VerificationResult(entry.id, entry.keyword, ct, "dry_run", cp)
        if self.log.update_checkpoint(entry.id, ct, cp):
            return VerificationResult(entry.id, entry.keyword, ct, "recorded", cp)
        return VerificationResult(entry.id, entry.keyword, ct, "already_done", cp, detail="refused by log")


def build_metrics(entries: Sequence[OpportunityLogEntry]) -> CatalystVerificationMetrics:
    """Aggregate accuracy stats fresh from ``entries``."""
    metrics = CatalystVerificationMetrics(total=len(entries))
    confidences: List[int] = []

    for entry in entries:
        if entry.prediction.confidence:
            confidences.append(entry.prediction.confidence)
        verdict = entry.final_verdict
        if verdict == Verdict.PENDING and entry.checkpoints:
            # Older lines may predate final_verdict; derive it
            verdict = final_verdict(entry)

        if verdict == Verdict.PENDING:
            metrics.pending += 1
        else:
            metrics.verified += 1
            metrics.overall.add(verdict)
            metrics.by_keyword.setdefault(entry.keyword, VerdictCounts()).add(verdict)

        for ct, cp in entry.checkpoints.items():
            metrics.by_checkpoint.setdefault(ct, VerdictCounts()).add(cp.verdict)

    if confidences:
        metrics.avg_confidence = sum(confidences) / len(confidences)
    return metrics


def _fmt_acc(value: Optional[float]) -> str:
    return f"{value:.1f}%" if value is not None else "n/a"


def _fmt_change(entry: OpportunityLogEntry, ct: CheckpointType) -> str:
    cp = entry.checkpoints.get(ct)
    return f"{cp.price_change_pct:+.2f}%" if cp else "-"


def format_report(
    metrics: CatalystVerificationMetrics,
    entries: Sequence[OpportunityLogEntry],
    recent: int = 5,
) -> str:
    lines = [
        "=" * 60,
        "CATALYST VERIFICATION REPORT",
        "=" * 60,
        f"Total signals:   {metrics.total}",
        f"Verified:        {metrics.verified}",
        f"Pending:         {metrics.pending}",
        f"Good calls:      {metrics.overall.good}",
        f"Bad calls:       {metrics.overall.bad}",
        f"Neutral:         {metrics.overall.neutral}",
        f"Accuracy:        {_fmt_acc(metrics.accuracy)}",
        "Avg confidence:  "
        + (f"{metrics.avg_confidence:.1f}" if metrics.avg_confidence is not None else "n/a"),
    ]

    if metrics.by_checkpoint:
        lines.append("")
        lines.append("By checkpoint:")
        for ct in CHECKPOINT_ORDER:
            counts = metrics.by_checkpoint.get(ct)
            if counts is None:
                continue
            lines.append(
                f"  {WINDOW_BY_TYPE[ct].label:<13} good={counts.good} bad={counts.bad} "
                f"neutral={counts.neutral} accuracy={_fmt_acc(counts.accuracy)}"
            )

    if metrics.by_keyword:
        lines.append("")
        lines.append("By keyword:")
        for keyword in sorted(metrics.by_keyword):
            counts = metrics.by_keyword[keyword]
            lines.append(
                f"  {keyword:<13} good={counts.good} bad={counts.bad} "
                f"neutral={counts.neutral} accuracy={_fmt_acc(counts.accuracy)}"
            )

    latest = sorted(entries, key=lambda e: e.timestamp, reverse=True)[:recent]
    if latest:
        lines.append("")
        lines.append(f"Last {len(latest)} signals:")
        for entry in latest:
            lines.append(
                f"  {entry.timestamp:%Y-%m-%d %H:%M} {entry.keyword:<12} "
                f"{entry.prediction.sentiment.value:<8} {entry.final_verdict.value:<9} "
                f"1h={_fmt_change(entry, CheckpointType.AFTER_1HR)} "
                f"session={_fmt_change(entry, CheckpointType.NEXT_SESSION)} "
                f"24h={_fmt_change(entry, CheckpointType.AFTER_24HR)}"
            )
    return "\n".join(lines)
