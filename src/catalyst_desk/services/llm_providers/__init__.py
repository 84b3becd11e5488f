"""
LLM Provider Adapters
======================

The catalyst lifecycle only depends on ``LanguageModelClient``: prompt in,
text out, ``LLMError`` on failure.  ``GeminiClient`` is the production
adapter; tests substitute a fake.
"""

from .base import LanguageModelClient
from .gemini import GeminiClient

__all__ = ["LanguageModelClient", "GeminiClient"]
