"""Portfolio gate: the deterministic policy layer over advisory LLM trade plans.

``PortfolioGate.evaluate`` is a pure function of the signal, the portfolio
snapshot, the advisor's proposal, the market mode and the clock.  Every guard
is evaluated and every failure is reported, so a PASS always carries the full
list of reasons.

Reject-style guards (concentration, cash) are checked against the *requested*
size, and caps (liquidity) only ever reduce the size afterwards.  Together with
auto-sizing that is bounded by both concentration room and cash, this keeps
the gate monotone: tightening any threshold can turn a BUY into a PASS, never
the reverse.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import List, Optional

from ..config import GateConfig
from ..logging_utils import get_logger
from ..market_hours import get_market_mode
from ..models import (
    CatalystSignal,
    Decision,
    GateAction,
    Holding,
    PortfolioContext,
    SellLeg,
    Sentiment,
    TradeProposal,
    normalize_symbol,
)
from ..time_utils import ensure_utc, now as utc_now
from .exits import build_exit_plan

log = get_logger("portfolio.gate")

_EPS = 1e-9


def risk_reward(entry: float, target: float, stop: float) -> Optional[float]:
    """(target - entry) / (entry - stop), or None when the stop is not below entry."""
    risk = entry - stop
    if risk <= 0:
        return None
    return (target - entry) / risk


class PortfolioGate:
    def __init__(self, config: Optional[GateConfig] = None):
        self.config = config or GateConfig()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check_signal(self, signal: CatalystSignal) -> List[str]:
        cfg = self.config
        violations: List[str] = []
        if not signal.is_catalyst:
            violations.append(f"signal is not a catalyst (impact {signal.impact_type.value})")
        if signal.sentiment != Sentiment.BULLISH:
            violations.append(
                f"sentiment {signal.sentiment.value}: long entries need a BULLISH signal"
            )
        if signal.confidence < cfg.min_confidence:
            violations.append(
                f"confidence {signal.confidence} below minimum {cfg.min_confidence}"
            )
        if not signal.ticker:
            violations.append(f"no tradable ticker for '{signal.keyword}'")
        return violations

    def _check_washout(self, symbol: str, context: PortfolioContext, now: datetime) -> List[str]:
        cutoff = now - timedelta(days=self.config.washout_days)
        for trade in context.recent_trades:
            if trade.action.upper() != "SELL" or normalize_symbol(trade.symbol) != symbol:
                continue
            executed = ensure_utc(trade.executed_at)
            if executed >= cutoff:
                days = (now - executed).total_seconds() / 86400.0
                return [
                    f"washout: {symbol} exited {days:.1f} days ago "
                    f"(< {self.config.washout_days} days)"
                ]
        return []

    def _find_funding_sell(
        self,
        context: PortfolioContext,
        symbol: str,
        shortfall: float,
        now: datetime,
        market_mode: str,
    ) -> Optional[SellLeg]:
        """Pick the weakest holding that may be sold to cover ``shortfall``.

        The sell leg must itself pass the market-mode gate and the minimum hold
        (unless that holding's own stop is hit).
        """
        if market_mode != "OPEN":
            return None

        eligible: List[Holding] = []
        for h in context.holdings:
            if normalize_symbol(h.symbol) == symbol or h.quantity <= 0 or h.price <= 0:
                continue
            stop_hit = h.stop_loss is not None and h.price <= h.stop_loss
            held_long_enough = False
            if h.bought_at is not None:
                held_hours = (now - ensure_utc(h.bought_at)).total_seconds() / 3600.0
                held_long_enough = held_hours >= self.config.min_hold_hours
            if not (stop_hit or held_long_enough):
                continue
            if h.market_value + _EPS < shortfall:
                continue
            eligible.append(h)

        if not eligible:
            return None
        weakest = min(eligible, key=lambda h: (h.return_pct, normalize_symbol(h.symbol)))
        qty = min(weakest.quantity, math.ceil(shortfall / weakest.price))
        return SellLeg(
            symbol=normalize_symbol(weakest.symbol),
            quantity=qty,
            est_price=weakest.price,
            reason=(
                f"sell {qty} {normalize_symbol(weakest.symbol)} "
                f"(return {weakest.return_pct:+.1f}%) to fund shortfall of {shortfall:,.2f}"
            ),
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        signal: CatalystSignal,
        context: PortfolioContext,
        proposal: Optional[TradeProposal] = None,
        market_mode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Decision:
        """Decide BUY / HOLD / PASS for ``signal`` against ``context``."""
        cfg = self.config
        now = ensure_utc(now) if now else utc_now()
        mode = market_mode or get_market_mode(now)
        symbol = normalize_symbol(signal.ticker or signal.keyword)

        decision = Decision(
            action=GateAction.PASS,
            symbol=symbol,
            market_mode=mode,
            signal_id=signal.id,
            evaluated_at=now,
        )
        violations = self._check_signal(signal)
        notes: List[str] = []

        # Hard guards apply whatever the advisor proposes
        violations.extend(self._check_washout(symbol, context, now))
        held = context.holding(symbol)
        if held is None and len(context.holdings) >= cfg.max_positions:
            violations.append(
                f"max positions reached ({len(context.holdings)}/{cfg.max_positions})"
            )

        if proposal is None:
            violations.append("no valid trade plan from advisor")
            return self._finish(decision, violations, notes)
        if proposal.action == GateAction.PASS:
            violations.append(f"advisor recommends PASS: {proposal.rationale or 'no reason given'}")
            return self._finish(decision, violations, notes)
        if proposal.action == GateAction.HOLD:
            if not violations:
                decision.action = GateAction.HOLD
                notes.append(f"advisor recommends HOLD: {proposal.rationale or 'no reason given'}")
            return self._finish(decision, violations, notes)

        # --- Price structure and 2:1 rule ---
        entry, target, stop = proposal.entry_price, proposal.target_price, proposal.stop_loss
        decision.entry_price, decision.target_price, decision.stop_loss = entry, target, stop
        prices_ok = False
        if stop is None:
            violations.append("stop loss is mandatory for BUY")
        if entry is None:
            violations.append("missing entry price")
        if target is None:
            violations.append("missing target price")
        if entry is not None and stop is not None and target is not None:
            if stop >= entry:
                violations.append(f"stop loss {stop:g} must be below entry {entry:g}")
            elif target <= entry:
                violations.append(f"target {target:g} must be above entry {entry:g}")
            else:
                prices_ok = True
                rr = risk_reward(entry, target, stop)
                decision.risk_reward = round(rr, 2)
                if rr + _EPS < cfg.min_risk_reward:
                    violations.append(
                        f"risk/reward {rr:.2f} below {cfg.min_risk_reward:g}:1"
                    )

        if prices_ok:
            self._size(decision, proposal, context, held, symbol, now, mode, violations, notes)

        if not violations:
            min_hold = max(cfg.min_hold_hours, proposal.min_hold_hours or 0.0)
            decision.min_hold_hours = min_hold
            decision.max_hold_days = cfg.max_hold_days
            decision.trailing_stop = True
            decision.exit_plan = build_exit_plan(cfg, stop, min_hold)
            if mode != "OPEN":
                decision.action = GateAction.HOLD
                notes.insert(0, f"market {mode}: watch only, no automatic BUY outside trading hours")
            else:
                decision.action = GateAction.BUY
                notes.insert(
                    0,
                    f"BUY {decision.quantity} {symbol} @ {entry:g} "
                    f"target {target:g} stop {stop:g} (R:R {decision.risk_reward:.2f})",
                )
        return self._finish(decision, violations, notes)

    def _size(
        self,
        decision: Decision,
        proposal: TradeProposal,
        context: PortfolioContext,
        held: Optional[Holding],
        symbol: str,
        now: datetime,
        mode: str,
        violations: List[str],
        notes: List[str],
    ) -> None:
        cfg = self.config
        entry = proposal.entry_price
        capital = context.total_capital
        cash = context.available_cash
        existing_value = held.market_value if held else 0.0
        cap_value = cfg.max_position_pct * capital
        room = cap_value - existing_value

        if proposal.quantity:
            requested_qty = int(proposal.quantity)
            explicit = True
        elif proposal.allocation_amount:
            requested_qty = int(math.floor(proposal.allocation_amount / entry))
            explicit = True
        else:
            budget = max(0.0, min(room, cash))
            requested_qty = int(math.floor(budget / entry))
            explicit = False
        requested_cost = requested_qty * entry

        if explicit and existing_value + requested_cost > cap_value + _EPS:
            pct = (existing_value + requested_cost) / capital * 100.0 if capital > 0 else float("inf")
            violations.append(
                f"concentration: {symbol} would be {pct:.1f}% of book "
                f"(max {cfg.max_position_pct * 100:g}%)"
            )
        elif not explicit and room <= _EPS:
            violations.append(
                f"concentration: {symbol} already at {cfg.max_position_pct * 100:g}% of book"
            )

        rotate = False
        if requested_cost > cash + _EPS:
            shortfall = requested_cost - cash
            if cfg.allow_rotation:
                rotate = self._find_funding_sell(context, symbol, shortfall, now, mode) is not None
            if not rotate:
                violations.append(
                    f"insufficient cash: need {requested_cost:,.2f}, available {cash:,.2f}"
                )

        qty = requested_qty
        adv = context.adv_10d.get(symbol)
        if adv:
            cap_qty = int(math.floor(cfg.adv_cap_pct * adv))
            if qty > cap_qty:
                notes.append(
                    f"liquidity cap: size reduced from {qty} to {cap_qty} shares "
                    f"({cfg.adv_cap_pct * 100:g}% of 10D ADV {adv:,.0f})"
                )
                qty = cap_qty
                decision.liquidity_capped = True
        else:
            notes.append("liquidity: 10D ADV unavailable, size not capped")

        decision.quantity = max(0, qty)
        decision.cost = round(decision.quantity * entry, 2)
        if rotate:
            # Fund only what the capped order actually spends
            shortfall = decision.cost - cash
            if shortfall > _EPS:
                leg = self._find_funding_sell(context, symbol, shortfall, now, mode)
                decision.funding_sell = leg
                notes.append(f"rotation: {leg.reason}")
            else:
                notes.append("rotation: not needed after liquidity cap")
        if decision.quantity < 1:
            violations.append("position size rounds to zero shares")
            return

        profit = decision.quantity * (proposal.target_price - entry)
        min_profit = cfg.friction_multiple * cfg.round_trip_cost
        if profit + _EPS < min_profit:
            violations.append(
                f"projected profit {profit:,.2f} below {cfg.friction_multiple:g}x "
                f"round-trip cost ({min_profit:,.2f})"
            )

    def _finish(self, decision: Decision, violations: List[str], notes: List[str]) -> Decision:
        if violations:
            decision.action = GateAction.PASS
            decision.funding_sell = None
            decision.reasons = violations + notes
        else:
            decision.reasons = notes
        log.info(
            "gate_decision symbol=%s action=%s mode=%s qty=%d reasons=%s",
            decision.symbol,
            decision.action.value,
            decision.market_mode,
            decision.quantity,
            decision.rationale,
        )
        return decision
