"""LLM trade-plan advisor.

The prompt describes the desk's rules using the same ``GateConfig`` numbers the
gate enforces, but whatever the model returns is advisory: the gate re-checks
every figure.  A failed or unparseable response yields ``None``, which the
gate turns into PASS.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from ..config import GateConfig
from ..errors import LLMError
from ..llm_json import extract_json_object
from ..llm_schemas import TradeProposalSchema
from ..logging_utils import get_logger
from ..models import CatalystSignal, PortfolioContext, TradeProposal
from ..services.llm_providers.base import LanguageModelClient

log = get_logger("portfolio.advisor")

SCHEMA_HINT = (
    '{"action": "BUY|HOLD|PASS", "entryPrice": number, "targetPrice": number, '
    '"stopLoss": number, "quantity": int|null, "minHoldHours": number, '
    '"confidence": 1-10, "rationale": str}'
)

PROMPT_TEMPLATE = """You are a disciplined swing trader managing a small catalyst book.

Signal: {keyword} -> {ticker}
Sentiment: {sentiment} | Impact: {impact} | Confidence: {confidence}/10
Key headline: {headline}
Summary: {summary}
Last price: {price}
Market mode: {mode}

Portfolio:
- Available cash: {cash:,.2f}
- Open positions ({n_positions}/{max_positions}): {positions}

Rules:
1. Only BUY with a stop loss. Reward must be at least {min_rr:g}x the risk.
2. No single position above {max_pct:g}% of the book; at most {max_positions} positions.
3. Do not re-enter a name exited within the last {washout} days.
4. Projected profit must be at least {friction:g}x round-trip costs (~{cost:,.0f}).
5. Hold at least {min_hold:g} hours unless the stop is hit.
6. If the market is not OPEN, answer HOLD.

Propose a trade plan as one JSON object. Leave quantity null to let the desk size it."""


class SignalAdvisor:
    def __init__(self, client: LanguageModelClient, config: Optional[GateConfig] = None):
        self.client = client
        self.config = config or GateConfig()

    def build_prompt(
        self,
        signal: CatalystSignal,
        context: PortfolioContext,
        market_mode: str,
        last_price: Optional[float],
    ) -> str:
        cfg = self.config
        positions = ", ".join(
            f"{h.symbol} x{h.quantity} @ {h.avg_price:g}" for h in context.holdings
        ) or "none"
        return PROMPT_TEMPLATE.format(
            keyword=signal.keyword,
            ticker=signal.ticker or "n/a",
            sentiment=signal.sentiment.value,
            impact=signal.impact_type.value,
            confidence=signal.confidence,
            headline=signal.headline,
            summary=signal.summary or "n/a",
            price=f"{last_price:g}" if last_price else "unknown",
            mode=market_mode,
            cash=context.available_cash,
            n_positions=len(context.holdings),
            max_positions=cfg.max_positions,
            positions=positions,
            min_rr=cfg.min_risk_reward,
            max_pct=cfg.max_position_pct * 100,
            washout=cfg.washout_days,
            friction=cfg.friction_multiple,
            cost=cfg.round_trip_cost,
            min_hold=cfg.min_hold_hours,
        )

    def propose(
        self,
        signal: CatalystSignal,
        context: PortfolioContext,
        market_mode: str,
        last_price: Optional[float] = None,
    ) -> Optional[TradeProposal]:
        prompt = self.build_prompt(signal, context, market_mode, last_price)
        try:
            raw = self.client.generate(prompt, schema_hint=SCHEMA_HINT)
        except LLMError as e:
            log.warning("advisor_llm_error ticker=%s err=%s", signal.ticker, str(e)[:200])
            return None

        data = extract_json_object(raw)
        if data is None:
            log.warning("advisor_parse_failed ticker=%s raw=%r", signal.ticker, (raw or "")[:500])
            return None
        try:
            parsed = TradeProposalSchema.model_validate(data)
        except ValidationError as e:
            log.warning(
                "advisor_parse_failed ticker=%s err=%s raw=%r",
                signal.ticker,
                str(e)[:200],
                (raw or "")[:500],
            )
            return None

        return TradeProposal(
            action=parsed.action,
            entry_price=parsed.entry_price or last_price,
            target_price=parsed.target_price,
            stop_loss=parsed.stop_loss,
            quantity=parsed.quantity,
            allocation_amount=parsed.allocation_amount,
            min_hold_hours=parsed.min_hold_hours,
            confidence=parsed.confidence,
            rationale=parsed.rationale,
        )
