"""Heuristic matcher linking executed trades back to reviewed suggestions.

Matching stays probabilistic: each (transaction, suggestion) pair gets a
confidence score and only pairs above ``propose_threshold`` are returned,
ranked best first.  Pairs scoring at or above ``auto_link_threshold`` may be
linked without asking.  A fill far from the suggested entry is penalised, so
a late trade at an unrelated price drops below the proposal threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .logging_utils import get_logger
from .models import CatalystSuggestion, TradeRecord, normalize_symbol
from .time_utils import ensure_utc

log = get_logger("matching")


@dataclass
class MatchProposal:
    suggestion_id: int
    transaction_id: str
    symbol: str
    confidence: float
    days_after_review: float
    price_diff_pct: Optional[float]
    auto_link: bool = False


class SuggestionMatcher:
    def __init__(
        self,
        base_score: float = 70.0,
        window_days: float = 7.0,
        propose_threshold: float = 50.0,
        auto_link_threshold: float = 80.0,
        mismatch_pct: float = 20.0,
        mismatch_penalty: float = 25.0,
    ):
        self.base_score = base_score
        self.window_days = window_days
        self.propose_threshold = propose_threshold
        self.auto_link_threshold = auto_link_threshold
        self.mismatch_pct = mismatch_pct
        self.mismatch_penalty = mismatch_penalty

    def score(self, txn: TradeRecord, suggestion: CatalystSuggestion) -> Optional[MatchProposal]:
        """Score one pair, or None when it is not a candidate at all."""
        if suggestion.id is None or suggestion.reviewed_at is None:
            return None
        if normalize_symbol(txn.symbol) != normalize_symbol(suggestion.symbol):
            return None
        if txn.action.upper() != suggestion.action.value:
            return None

        days = (
            ensure_utc(txn.executed_at) - ensure_utc(suggestion.reviewed_at)
        ).total_seconds() / 86400.0
        if days < 0 or days > self.window_days:
            return None

        score = self.base_score
        if days <= 1:
            score += 20
        elif days <= 3:
            score += 10
        elif days <= 5:
            score += 5

        price_diff_pct = None
        if suggestion.entry_price:
            price_diff_pct = abs(txn.price - suggestion.entry_price) / suggestion.entry_price * 100.0
            if price_diff_pct <= 5:
                score += 10
            elif price_diff_pct <= 10:
                score += 5
            elif price_diff_pct > self.mismatch_pct:
                score -= self.mismatch_penalty

        score = min(score, 100.0)
        return MatchProposal(
            suggestion_id=suggestion.id,
            transaction_id=txn.id or f"{normalize_symbol(txn.symbol)}@{txn.executed_at.isoformat()}",
            symbol=normalize_symbol(txn.symbol),
            confidence=score,
            days_after_review=round(days, 2),
            price_diff_pct=round(price_diff_pct, 2) if price_diff_pct is not None else None,
            auto_link=score >= self.auto_link_threshold,
        )

    def find_matches(
        self,
        transactions: Sequence[TradeRecord],
        suggestions: Sequence[CatalystSuggestion],
        exclude: Iterable[Tuple[int, str]] = (),
    ) -> List[MatchProposal]:
        """Candidate links above the proposal threshold, skipping pairs in ``exclude``."""
        skip = set(exclude)
        proposals: List[MatchProposal] = []
        for txn in transactions:
            for suggestion in suggestions:
                match = self.score(txn, suggestion)
                if match is None or (match.suggestion_id, match.transaction_id) in skip:
                    continue
                if match.confidence > self.propose_threshold:
                    proposals.append(match)
        proposals.sort(key=lambda m: (-m.confidence, m.days_after_review))
        log.info(
            "match_candidates transactions=%d suggestions=%d proposals=%d",
            len(transactions),
            len(suggestions),
            len(proposals),
        )
        return proposals
