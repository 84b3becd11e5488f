"""
Portfolio Gate Package

Components:
- gate: deterministic BUY/HOLD/PASS policy over advisory trade plans
- exits: phased trailing-stop state machine for open positions
- advisor: LLM trade-plan proposals (advisory only)

Usage:
    from catalyst_desk.portfolio import PortfolioGate

    gate = PortfolioGate(GateConfig())
    decision = gate.evaluate(signal, context, proposal)
"""

from .advisor import SignalAdvisor
from .exits import PhasedTrailingStop, build_exit_plan
from .gate import PortfolioGate, risk_reward

__all__ = [
    "PortfolioGate",
    "PhasedTrailingStop",
    "SignalAdvisor",
    "build_exit_plan",
    "risk_reward",
]
