"""Phased trailing exit for open catalyst positions.

Phase 1 covers the minimum hold window and trails a wide ATR chandelier below
the highest high.  After the hold window, an unrealized gain of
``phase2_gain_pct`` moves the position to Phase 2 (EMA20 trail) and an
overbought RSI moves it to Phase 3 (EMA9 trail).  Phases only ever advance and
the trailing stop only ever rises.  During the minimum hold only the hard stop
can trigger an exit; a position still open after ``max_hold_days`` is flagged
for exit as well.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

import pandas as pd

from ..config import GateConfig
from ..indicators import calculate_atr, calculate_ema, calculate_rsi
from ..logging_utils import get_logger
from ..models import ExitPhase, ExitPlan, ExitState
from ..time_utils import ensure_utc

log = get_logger("portfolio.exits")


def build_exit_plan(config: GateConfig, hard_stop: float, min_hold_hours: float) -> ExitPlan:
    """Describe the phased exit attached to an approved BUY."""
    return ExitPlan(
        hard_stop=hard_stop,
        min_hold_hours=min_hold_hours,
        max_hold_days=config.max_hold_days,
        phases=[
            ExitPhase(
                phase=1,
                name="volatility_trail",
                trigger=f"entry, first {min_hold_hours:g}h",
                stop_rule=f"highest high - {config.phase1_atr_multiple:g}x ATR{config.atr_period}",
            ),
            ExitPhase(
                phase=2,
                name="trend_trail",
                trigger=f"unrealized gain >= {config.phase2_gain_pct:g}%",
                stop_rule=f"EMA{config.phase2_ema_span}",
            ),
            ExitPhase(
                phase=3,
                name="overbought_trail",
                trigger=f"RSI{config.rsi_period} > {config.phase3_rsi:g}",
                stop_rule=f"EMA{config.phase3_ema_span}",
            ),
        ],
    )


class PhasedTrailingStop:
    """State machine evaluated on every price refresh of an open position."""

    def __init__(self, config: Optional[GateConfig] = None):
        self.config = config or GateConfig()

    def start(self, entry_price: float, entered_at: datetime, hard_stop: float) -> ExitState:
        return ExitState(
            entry_price=entry_price,
            entered_at=ensure_utc(entered_at),
            hard_stop=hard_stop,
            trailing_stop=hard_stop,
            phase=1,
            highest_high=entry_price,
            updated_at=ensure_utc(entered_at),
        )

    def _candidate_stop(self, phase: int, df: pd.DataFrame, highest_high: float) -> Optional[float]:
        cfg = self.config
        closes = df["Close"]
        if phase >= 3:
            return calculate_ema(closes, cfg.phase3_ema_span)
        if phase == 2:
            return calculate_ema(closes, cfg.phase2_ema_span)
        atr = calculate_atr(df, cfg.atr_period)
        if atr is None:
            return None
        return highest_high - cfg.phase1_atr_multiple * atr

    def update(
        self,
        state: ExitState,
        df: pd.DataFrame,
        now: datetime,
        min_hold_hours: Optional[float] = None,
        max_hold_days: Optional[int] = None,
    ) -> ExitState:
        """Advance ``state`` with the latest bars and return the new state."""
        if state.exit_triggered:
            return state
        if df is None or df.empty:
            return state

        cfg = self.config
        min_hold = cfg.min_hold_hours if min_hold_hours is None else min_hold_hours
        max_hold = cfg.max_hold_days if max_hold_days is None else max_hold_days
        now = ensure_utc(now)

        last_close = float(df["Close"].iloc[-1])
        highest_high = max(state.highest_high, float(df["High"].iloc[-1]), last_close)
        held_hours = (now - state.entered_at).total_seconds() / 3600.0
        gain_pct = (last_close - state.entry_price) / state.entry_price * 100.0

        phase = state.phase
        if held_hours >= min_hold:
            rsi = calculate_rsi(df["Close"], cfg.rsi_period)
            if rsi is not None and rsi > cfg.phase3_rsi:
                phase = 3
            elif gain_pct >= cfg.phase2_gain_pct:
                phase = max(phase, 2)
        phase = max(state.phase, phase)

        trailing = max(state.trailing_stop, state.hard_stop)
        candidate = self._candidate_stop(phase, df, highest_high)
        if candidate is not None:
            trailing = max(trailing, candidate)

        exit_triggered = False
        exit_reason = ""
        if last_close <= state.hard_stop:
            exit_triggered = True
            exit_reason = "stop_loss_hit"
        elif held_hours >= min_hold and last_close <= trailing:
            exit_triggered = True
            exit_reason = f"trailing_stop_phase{phase}"
        elif max_hold and held_hours >= max_hold * 24:
            exit_triggered = True
            exit_reason = "max_hold_reached"

        if phase != state.phase:
            log.info(
                "exit_phase_advanced from=%d to=%d gain_pct=%.2f held_hours=%.1f",
                state.phase,
                phase,
                gain_pct,
                held_hours,
            )
        if exit_triggered:
            log.info(
                "exit_triggered reason=%s close=%.2f trailing=%.2f hard=%.2f",
                exit_reason,
                last_close,
                trailing,
                state.hard_stop,
            )

        return replace(
            state,
            phase=phase,
            trailing_stop=round(trailing, 4),
            highest_high=highest_high,
            last_close=last_close,
            exit_triggered=exit_triggered,
            exit_reason=exit_reason,
            updated_at=now,
        )
