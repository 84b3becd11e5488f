"""Batch catalyst classification.

All recent headlines for one asset go to the model in a single prompt so it can
weigh corroboration across sources against a lone unconfirmed report.  The
classifier never raises on model misbehaviour: LLM errors and unparseable
output both come back as a NOISE/NEUTRAL result with confidence 0 and
``failed=True``.
"""

from __future__ import annotations

from typing import List, Sequence

from pydantic import ValidationError

from .errors import LLMError
from .llm_json import extract_json_object
from .llm_schemas import CatalystAnalysis
from .logging_utils import get_logger
from .models import BatchResult, CatalystAsset, ImpactType, NewsItem, Sentiment
from .services.llm_providers.base import LanguageModelClient

log = get_logger("classifier")

SCHEMA_HINT = (
    '{"isCatalyst": bool, "sentiment": "BULLISH|BEARISH|NEUTRAL", '
    '"impactType": "SUPPLY_SHOCK|DEMAND_SHOCK|REGULATORY|NOISE", '
    '"confidence": 1-10, "keyHeadline": str, "summary": str, "reasoning": str}'
)

PROMPT_TEMPLATE = """You are a commodities and equities catalyst analyst.

Asset: {keyword} ({asset_type}){ticker_line}
{notes_line}
Below are ALL recent headlines for this asset. Judge them together: several
independent sources reporting the same event is stronger evidence than a single
unconfirmed report. Routine coverage, opinion and rehashed news is NOISE.

Headlines:
{headlines}

Decide whether these headlines describe a material supply shock, demand shock
or regulatory change that is likely to move the price within days. Pick the
single most important headline as keyHeadline, quoted exactly.

Respond with one JSON object only."""


def _fallback(reasoning: str, summary: str, count: int) -> BatchResult:
    return BatchResult(
        is_catalyst=False,
        sentiment=Sentiment.NEUTRAL,
        impact_type=ImpactType.NOISE,
        confidence=0,
        key_headline="",
        summary=summary,
        reasoning=reasoning,
        headlines_analyzed=count,
        failed=True,
    )


def format_headlines(headlines: Sequence[NewsItem]) -> str:
    """Number headlines in input order as ``i. "title" - source (date)``."""
    lines: List[str] = []
    for i, item in enumerate(headlines, start=1):
        date = item.published_at.strftime("%Y-%m-%d %H:%M UTC") if item.published_at else "unknown date"
        source = item.source or "unknown source"
        lines.append(f'{i}. "{item.title}" - {source} ({date})')
    return "\n".join(lines)


def build_prompt(headlines: Sequence[NewsItem], asset: CatalystAsset) -> str:
    ticker_line = f"\nTicker: {asset.ticker}" if asset.ticker else ""
    notes_line = f"Context: {asset.notes}\n" if asset.notes else ""
    return PROMPT_TEMPLATE.format(
        keyword=asset.keyword,
        asset_type=asset.asset_type.value,
        ticker_line=ticker_line,
        notes_line=notes_line,
        headlines=format_headlines(headlines),
    )


def parse_analysis(raw: str, count: int) -> BatchResult:
    """Turn raw model text into a ``BatchResult``; fallback on any failure."""
    data = extract_json_object(raw)
    if data is None:
        log.warning("classifier_parse_failed reason=no_json raw=%r", (raw or "")[:500])
        return _fallback("Failed to parse LLM response", "", count)
    try:
        analysis = CatalystAnalysis.model_validate(data)
    except ValidationError as e:
        log.warning(
            "classifier_parse_failed reason=validation err=%s raw=%r",
            str(e)[:200],
            (raw or "")[:500],
        )
        return _fallback("Failed to parse LLM response", "", count)

    return BatchResult(
        is_catalyst=analysis.is_catalyst,
        sentiment=analysis.sentiment,
        impact_type=analysis.impact_type,
        confidence=analysis.confidence,
        key_headline=analysis.key_headline,
        summary=analysis.summary,
        reasoning=analysis.reasoning,
        headlines_analyzed=count,
    )


class CatalystClassifier:
    """Sends one asset's headlines to the model and returns a holistic verdict."""

    def __init__(self, client: LanguageModelClient):
        self.client = client

    def analyze_batch(self, headlines: Sequence[NewsItem], asset: CatalystAsset) -> BatchResult:
        headlines = list(headlines)
        if not headlines:
            return BatchResult(
                is_catalyst=False,
                sentiment=Sentiment.NEUTRAL,
                impact_type=ImpactType.NOISE,
                confidence=0,
                summary="No recent news found for this asset.",
                reasoning="No news items to analyze",
                headlines_analyzed=0,
            )

        prompt = build_prompt(headlines, asset)
        try:
            raw = self.client.generate(prompt, schema_hint=SCHEMA_HINT)
        except LLMError as e:
            log.warning(
                "classifier_llm_error keyword=%s headlines=%d err=%s",
                asset.keyword,
                len(headlines),
                str(e)[:200],
            )
            return _fallback(f"LLM error: {e}", "", len(headlines))

        result = parse_analysis(raw, len(headlines))
        log.info(
            "classifier_result keyword=%s headlines=%d catalyst=%s sentiment=%s impact=%s conf=%d",
            asset.keyword,
            len(headlines),
            result.is_catalyst,
            result.sentiment.value,
            result.impact_type.value,
            result.confidence,
        )
        return result
