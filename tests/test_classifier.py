"""Tests for batch catalyst classification and response coercion."""

import json

import pytest

from catalyst_desk.classifier import CatalystClassifier, build_prompt, format_headlines, parse_analysis
from catalyst_desk.errors import LLMTimeoutError
from catalyst_desk.llm_schemas import CatalystAnalysis, TradeProposalSchema, clamp_confidence
from catalyst_desk.models import AssetType, CatalystAsset, GateAction, ImpactType, Sentiment
from tests.conftest import FakeLLMClient, make_news

COPPER = CatalystAsset(id="copper", keyword="Copper", ticker="HINDCOPPER", notes="Global copper supply")


def _response(**overrides):
    body = {
        "isCatalyst": True,
        "sentiment": "BULLISH",
        "impactType": "SUPPLY_SHOCK",
        "confidence": 8,
        "keyHeadline": "Chile copper mine halts output after strike",
        "summary": "Major supply disruption",
        "reasoning": "Three sources confirm the halt",
    }
    body.update(overrides)
    return json.dumps(body)


class TestPrompt:
    def test_headlines_numbered_in_input_order(self):
        text = format_headlines(
            [make_news("First headline", source="Reuters"), make_news("Second headline", source="")]
        )
        lines = text.splitlines()
        assert lines[0].startswith('1. "First headline" - Reuters (2026-03-02')
        assert lines[1].startswith('2. "Second headline" - unknown source')

    def test_prompt_carries_asset_context(self):
        prompt = build_prompt([make_news("Mine halts output")], COPPER)
        assert "Copper" in prompt
        assert "HINDCOPPER" in prompt
        assert "Global copper supply" in prompt
        assert '1. "Mine halts output"' in prompt


class TestAnalyzeBatch:
    def test_single_call_for_whole_batch(self):
        llm = FakeLLMClient([_response()])
        headlines = [make_news(f"Copper headline {i}") for i in range(4)]
        result = CatalystClassifier(llm).analyze_batch(headlines, COPPER)
        assert len(llm.prompts) == 1
        assert result.is_catalyst is True
        assert result.sentiment == Sentiment.BULLISH
        assert result.impact_type == ImpactType.SUPPLY_SHOCK
        assert result.confidence == 8
        assert result.headlines_analyzed == 4
        assert result.failed is False

    def test_empty_batch_skips_llm(self):
        llm = FakeLLMClient()
        result = CatalystClassifier(llm).analyze_batch([], COPPER)
        assert llm.prompts == []
        assert result.is_catalyst is False
        assert result.confidence == 0
        assert result.summary == "No recent news found for this asset."
        assert result.reasoning == "No news items to analyze"

    def test_llm_error_returns_fallback(self):
        llm = FakeLLMClient([LLMTimeoutError("timed out")])
        result = CatalystClassifier(llm).analyze_batch([make_news("Mine strike")], COPPER)
        assert result.failed is True
        assert result.is_catalyst is False
        assert result.sentiment == Sentiment.NEUTRAL
        assert result.impact_type == ImpactType.NOISE
        assert result.confidence == 0
        assert result.reasoning.startswith("LLM error:")

    def test_unparseable_response_returns_fallback(self, caplog):
        llm = FakeLLMClient(["I think this is bullish but I'm not sure."])
        with caplog.at_level("WARNING"):
            result = CatalystClassifier(llm).analyze_batch([make_news("Mine strike")], COPPER)
        assert result.failed is True
        assert result.reasoning == "Failed to parse LLM response"
        assert "classifier_parse_failed" in caplog.text

    def test_fenced_response_is_parsed(self):
        llm = FakeLLMClient(["```json\n" + _response(confidence=9) + "\n```"])
        result = CatalystClassifier(llm).analyze_batch([make_news("Mine strike")], COPPER)
        assert result.confidence == 9
        assert result.failed is False


class TestParseAnalysisCoercion:
    @pytest.mark.parametrize(
        "raw_conf, expected",
        [(15, 10), (0, 1), (-3, 1), (7.6, 8), ("9", 9), ("high", 1), (None, 1)],
    )
    def test_confidence_clamped(self, raw_conf, expected):
        result = parse_analysis(_response(confidence=raw_conf), 1)
        assert result.confidence == expected

    def test_unknown_sentiment_becomes_neutral(self):
        assert parse_analysis(_response(sentiment="very bullish"), 1).sentiment == Sentiment.NEUTRAL

    def test_lowercase_enums_accepted(self):
        result = parse_analysis(_response(sentiment="bearish", impactType="demand_shock"), 1)
        assert result.sentiment == Sentiment.BEARISH
        assert result.impact_type == ImpactType.DEMAND_SHOCK

    def test_noise_impact_is_never_catalyst(self):
        result = parse_analysis(_response(isCatalyst=True, impactType="NOISE"), 1)
        assert result.is_catalyst is False

    def test_unknown_impact_becomes_noise(self):
        result = parse_analysis(_response(impactType="EARNINGS"), 1)
        assert result.impact_type == ImpactType.NOISE
        assert result.is_catalyst is False

    def test_string_boolean(self):
        assert parse_analysis(_response(isCatalyst="false"), 1).is_catalyst is False


class TestSchemas:
    def test_clamp_confidence_nan(self):
        assert clamp_confidence(float("nan")) == 1

    def test_catalyst_analysis_accepts_field_names(self):
        parsed = CatalystAnalysis.model_validate({"is_catalyst": True, "impact_type": "REGULATORY"})
        assert parsed.is_catalyst is True
        assert parsed.impact_type == ImpactType.REGULATORY

    @pytest.mark.parametrize(
        "action, expected",
        [("BUY", GateAction.BUY), ("buy_watch", GateAction.BUY), ("WATCH", GateAction.HOLD),
         ("hold", GateAction.HOLD), ("SELL", GateAction.PASS), (None, GateAction.PASS)],
    )
    def test_trade_action_mapping(self, action, expected):
        assert TradeProposalSchema.model_validate({"action": action}).action == expected

    def test_trade_prices_coerced(self):
        parsed = TradeProposalSchema.model_validate(
            {"action": "BUY", "entryPrice": "Rs 1,250.50", "stopLoss": -5, "targetPrice": "n/a",
             "quantity": "12 shares", "confidence": None}
        )
        assert parsed.entry_price == 1250.5
        assert parsed.stop_loss is None
        assert parsed.target_price is None
        assert parsed.quantity == 12
        assert parsed.confidence == 5

    def test_asset_type_default(self):
        assert COPPER.asset_type == AssetType.COMMODITY
