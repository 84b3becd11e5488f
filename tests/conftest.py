"""Shared fixtures: a scripted LLM, a frozen clock, an in-memory store."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pandas as pd
import pytest

from catalyst_desk.config import reset_settings
from catalyst_desk.errors import LLMError
from catalyst_desk.models import (
    CatalystSignal,
    ImpactType,
    NewsItem,
    Sentiment,
)
from catalyst_desk.opportunity_log import OpportunityLog
from catalyst_desk.services.llm_providers.base import LanguageModelClient
from catalyst_desk.suggestion_store import SuggestionStore
from catalyst_desk.time_utils import FrozenClock

# Monday 2 March 2026, 10:00 IST (market OPEN)
MARKET_OPEN_UTC = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)
# Same Monday, 18:00 IST (market CLOSED)
MARKET_CLOSED_UTC = datetime(2026, 3, 2, 12, 30, tzinfo=timezone.utc)


class FakeLLMClient(LanguageModelClient):
    """Returns scripted responses in order; an Exception entry is raised."""

    def __init__(self, responses: Optional[List] = None):
        self.responses = list(responses or [])
        self.prompts: List[str] = []

    def generate(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise LLMError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture(autouse=True)
def _fresh_settings(tmp_path, monkeypatch):
    """Point settings at a temp data dir and drop the cache around every test."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """CLI entry points call setup_logging(); undo it after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def clock():
    return FrozenClock(MARKET_OPEN_UTC)


@pytest.fixture
def store():
    s = SuggestionStore.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def opportunity_log(tmp_path):
    return OpportunityLog(tmp_path / "logs" / "opportunities.jsonl")


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


def make_signal(**overrides) -> CatalystSignal:
    fields = dict(
        id="sig-1",
        keyword="Copper",
        ticker="HINDCOPPER",
        headline="Chile copper mine halts output after strike",
        sentiment=Sentiment.BULLISH,
        impact_type=ImpactType.SUPPLY_SHOCK,
        confidence=9,
        created_at=MARKET_OPEN_UTC,
    )
    fields.update(overrides)
    return CatalystSignal(**fields)


def make_news(title: str, minutes_ago: float = 30, source: str = "Reuters") -> NewsItem:
    return NewsItem(
        title=title,
        source=source,
        published_at=MARKET_OPEN_UTC - timedelta(minutes=minutes_ago),
    )


def make_bars(closes, highs=None, lows=None, volume=100_000) -> pd.DataFrame:
    closes = list(closes)
    highs = list(highs) if highs is not None else [c * 1.01 for c in closes]
    lows = list(lows) if lows is not None else [c * 0.99 for c in closes]
    index = pd.date_range("2026-01-01", periods=len(closes), freq="D", tz="UTC")
    return pd.DataFrame(
        {
            "Open": closes,
            "High": highs,
            "Low": lows,
            "Close": closes,
            "Volume": list(volume) if isinstance(volume, (list, tuple)) else [volume] * len(closes),
        },
        index=index,
    )
