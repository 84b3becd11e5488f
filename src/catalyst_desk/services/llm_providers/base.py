"""
Base LLM Provider Interface
============================

Abstract client that every language model adapter implements.  Output is
untrusted text: callers extract JSON with ``catalyst_desk.llm_json`` and fall
back to a safe default when that fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class LanguageModelClient(ABC):
    """Abstract base class for language model clients."""

    @abstractmethod
    def generate(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        """
        Execute one completion.

        Args:
            prompt: Full prompt text
            schema_hint: Optional description of the expected JSON shape;
                adapters that support structured output use it to request JSON

        Returns:
            Raw response text (possibly empty)

        Raises:
            LLMError: On API errors once retries are exhausted
            LLMTimeoutError: When every attempt timed out
        """
