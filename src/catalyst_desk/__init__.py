"""Catalyst desk package.

This package contains the catalyst lifecycle of the portfolio assistant:
headline noise filtering, LLM batch classification, the portfolio gate that
turns a classified signal into a BUY/HOLD/PASS decision, the suggestion
store, and the checkpoint verification engine that scores every signal
against real price movement after the fact.
"""

__all__: list[str] = []
