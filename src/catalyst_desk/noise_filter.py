"""Regex pre-filter for headlines that are rarely material catalysts.

Dropping a headline here only saves an LLM call, while a wrong match silently
loses a real catalyst, so the list stays narrow and literal.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Pattern, TypeVar

from .logging_utils import get_logger

log = get_logger("noise_filter")

T = TypeVar("T")

NOISE_PATTERNS: List[Pattern[str]] = [
    # Earnings and periodic results
    re.compile(r"earnings", re.IGNORECASE),
    re.compile(r"quarterly results", re.IGNORECASE),
    re.compile(r"q[1-4] results", re.IGNORECASE),
    # Analyst and rating notes
    re.compile(r"analyst (upgrade|downgrade)", re.IGNORECASE),
    re.compile(r"price target", re.IGNORECASE),
    re.compile(r"rating (upgrade|downgrade)", re.IGNORECASE),
    # Routine market wrap
    re.compile(r"market (open|close)", re.IGNORECASE),
    re.compile(r"index (add|remove)", re.IGNORECASE),
    # Editorial
    re.compile(r"opinion:", re.IGNORECASE),
    re.compile(r"editorial:", re.IGNORECASE),
    # Listicles
    re.compile(r"what you need to know", re.IGNORECASE),
    re.compile(r"things to watch", re.IGNORECASE),
    # Unrelated crime stories
    re.compile(r"arrested for", re.IGNORECASE),
    re.compile(r"theft", re.IGNORECASE),
    re.compile(r"stolen", re.IGNORECASE),
]


def is_likely_noise(headline: str) -> bool:
    """Return True if ``headline`` matches any noise pattern."""
    if not headline:
        return False
    for pattern in NOISE_PATTERNS:
        if pattern.search(headline):
            return True
    return False


def filter_noise(items: Iterable[T]) -> List[T]:
    """Drop items whose ``title`` looks like noise, preserving input order."""
    items = list(items)
    kept = [it for it in items if not is_likely_noise(getattr(it, "title", "") or "")]
    dropped = len(items) - len(kept)
    if dropped:
        log.info("noise_filtered dropped=%d total=%d", dropped, len(items))
    return kept
