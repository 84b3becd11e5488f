"""
Google Gemini Provider
=======================

Production ``LanguageModelClient`` backed by the google-generativeai SDK.

Each call carries an explicit request timeout, is retried with exponential
backoff up to ``max_retries`` attempts, and is spaced from the previous call
by ``call_delay`` seconds.

API Documentation: https://ai.google.dev/gemini-api/docs
"""

from __future__ import annotations

from typing import Callable, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from ... import time_utils
from ...config import Settings, get_settings
from ...errors import ConfigurationError, LLMError, LLMTimeoutError
from ...logging_utils import get_logger
from .base import LanguageModelClient

log = get_logger("gemini_provider")

# Transient API failures worth retrying
_RETRYABLE = (
    google_exceptions.DeadlineExceeded,
    google_exceptions.ServiceUnavailable,
    google_exceptions.ResourceExhausted,
    google_exceptions.InternalServerError,
    TimeoutError,
    ConnectionError,
)


class GeminiClient(LanguageModelClient):
    """Google Gemini API client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time_utils.sleep,
    ):
        settings = settings or get_settings()
        self.api_key = settings.gemini_api_key
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")

        self.model = settings.gemini_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens
        self.timeout = settings.llm_timeout_sec
        self.max_retries = max(1, settings.llm_max_retries)
        self.call_delay = settings.llm_call_delay_sec
        self.backoff_base = 2.0
        self._sleep = sleep
        self._last_call: Optional[float] = None

        genai.configure(api_key=self.api_key)
        log.info("gemini_client_initialized model=%s timeout=%.1fs", self.model, self.timeout)

    def _respect_call_delay(self) -> None:
        if self._last_call is None or self.call_delay <= 0:
            return
        elapsed = time_utils.monotonic() - self._last_call
        if elapsed < self.call_delay:
            self._sleep(self.call_delay - elapsed)

    def _build_model(self, schema_hint: Optional[str]):
        generation_config = {
            "temperature": self.temperature,
            "max_output_tokens": self.max_tokens,
        }
        if schema_hint:
            generation_config["response_mime_type"] = "application/json"
        return genai.GenerativeModel(
            model_name=self.model,
            generation_config=generation_config,
        )

    def generate(self, prompt: str, schema_hint: Optional[str] = None) -> str:
        try:
            model = self._build_model(schema_hint)
        except Exception as e:
            log.error("gemini_model_init_failed model=%s err=%s", self.model, str(e)[:200])
            raise LLMError(f"Gemini model setup failed: {e}") from e
        if schema_hint:
            prompt = f"{prompt}\n\nRespond with JSON matching: {schema_hint}"

        last_error: Optional[Exception] = None
        timed_out = True
        for attempt in range(self.max_retries):
            self._respect_call_delay()
            try:
                log.debug(
                    "gemini_query_start model=%s prompt_len=%d attempt=%d/%d",
                    self.model,
                    len(prompt),
                    attempt + 1,
                    self.max_retries,
                )
                response = model.generate_content(
                    prompt, request_options={"timeout": self.timeout}
                )
                self._last_call = time_utils.monotonic()
                return self._extract_text(response)
            except _RETRYABLE as e:
                self._last_call = time_utils.monotonic()
                last_error = e
                if not isinstance(e, (google_exceptions.DeadlineExceeded, TimeoutError)):
                    timed_out = False
                if attempt < self.max_retries - 1:
                    delay = self.backoff_base * (2**attempt)
                    log.warning(
                        "gemini_transient_error attempt=%d/%d retrying_in=%.1fs err=%s",
                        attempt + 1,
                        self.max_retries,
                        delay,
                        str(e)[:200],
                    )
                    self._sleep(delay)
            except google_exceptions.GoogleAPIError as e:
                self._last_call = time_utils.monotonic()
                log.error("gemini_query_failed model=%s err=%s", self.model, str(e)[:200])
                raise LLMError(f"Gemini request failed: {e}") from e
            except Exception as e:  # auth, argument and transport errors from the SDK
                self._last_call = time_utils.monotonic()
                log.error(
                    "gemini_unexpected_error model=%s type=%s err=%s",
                    self.model,
                    type(e).__name__,
                    str(e)[:200],
                )
                raise LLMError(f"Gemini request failed: {e}") from e

        log.error(
            "gemini_failed_after_retries model=%s attempts=%d err=%s",
            self.model,
            self.max_retries,
            last_error,
        )
        if timed_out:
            raise LLMTimeoutError(
                f"Gemini timed out after {self.max_retries} attempts ({self.timeout}s each)"
            ) from last_error
        raise LLMError(f"Gemini unavailable after {self.max_retries} attempts: {last_error}") from last_error

    def _extract_text(self, response) -> str:
        # response.text raises ValueError when the safety filter blocked output
        try:
            text = response.text or ""
        except ValueError as e:
            log.warning("gemini_safety_block model=%s reason=%s", self.model, str(e)[:100])
            return ""
        usage = getattr(response, "usage_metadata", None)
        log.debug(
            "gemini_query_complete tokens_in=%s tokens_out=%s",
            getattr(usage, "prompt_token_count", None),
            getattr(usage, "candidates_token_count", None),
        )
        return text.strip()
