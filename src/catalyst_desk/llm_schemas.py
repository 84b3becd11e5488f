"""
LLM Response Schemas
====================

Pydantic models that validate and coerce JSON extracted from model output.
Anything out of vocabulary or out of range is coerced to a safe value instead
of failing validation: unknown sentiment becomes NEUTRAL, unknown impact
becomes NOISE, confidence is clamped into [1, 10].
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import GateAction, ImpactType, Sentiment

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def clamp_confidence(value: Any) -> int:
    """Clamp any model-supplied confidence into [1, 10]; non-numeric becomes 1."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 1
    if math.isnan(num):
        return 1
    return int(max(1, min(10, round(num))))


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(float(value)) else float(value)
    match = _NUMBER_RE.search(str(value).replace(",", ""))
    return float(match.group(0)) if match else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "y"}
    return bool(value)


class CatalystAnalysis(BaseModel):
    """Batch verdict for one asset's headlines."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_catalyst: bool = Field(default=False, alias="isCatalyst")
    sentiment: Sentiment = Sentiment.NEUTRAL
    impact_type: ImpactType = Field(default=ImpactType.NOISE, alias="impactType")
    confidence: int = 1
    key_headline: str = Field(default="", alias="keyHeadline")
    summary: str = ""
    reasoning: str = ""

    @field_validator("is_catalyst", mode="before")
    @classmethod
    def _coerce_bool(cls, v):
        return _to_bool(v)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, v):
        try:
            return Sentiment(str(v).strip().upper())
        except ValueError:
            return Sentiment.NEUTRAL

    @field_validator("impact_type", mode="before")
    @classmethod
    def _coerce_impact(cls, v):
        try:
            return ImpactType(str(v).strip().upper())
        except ValueError:
            return ImpactType.NOISE

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        return clamp_confidence(v)

    @field_validator("key_headline", "summary", "reasoning", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        return "" if v is None else str(v)

    @model_validator(mode="after")
    def _noise_is_never_catalyst(self):
        if self.impact_type == ImpactType.NOISE:
            self.is_catalyst = False
        return self


class TradeProposalSchema(BaseModel):
    """Advisory trade plan for a catalyst signal."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: GateAction = GateAction.PASS
    entry_price: Optional[float] = Field(default=None, alias="entryPrice")
    target_price: Optional[float] = Field(default=None, alias="targetPrice")
    stop_loss: Optional[float] = Field(default=None, alias="stopLoss")
    quantity: Optional[int] = None
    allocation_amount: Optional[float] = Field(default=None, alias="allocationAmount")
    min_hold_hours: Optional[float] = Field(default=None, alias="minHoldHours")
    confidence: int = 5
    rationale: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, v):
        s = str(v or "").strip().upper()
        if s in {"BUY", "BUY_WATCH"}:
            return GateAction.BUY
        if s in {"HOLD", "WATCH"}:
            return GateAction.HOLD
        return GateAction.PASS

    @field_validator(
        "entry_price", "target_price", "stop_loss", "allocation_amount", "min_hold_hours",
        mode="before",
    )
    @classmethod
    def _coerce_price(cls, v):
        num = _to_float(v)
        return num if num is not None and num > 0 else None

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, v):
        num = _to_float(v)
        return int(num) if num is not None and num >= 1 else None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        if v is None:
            return 5
        return clamp_confidence(v)

    @field_validator("rationale", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        return "" if v is None else str(v)
