"""Exception hierarchy for the catalyst desk.

Only configuration problems are meant to escape to the top of a run.  LLM and
price failures are caught at the component boundary and turned into clearly
marked failure results; gate guard violations are not errors at all.
"""

from __future__ import annotations


class CatalystDeskError(Exception):
    """Base class for all catalyst desk errors."""


class ConfigurationError(CatalystDeskError):
    """A required setting (API key, path) is missing or invalid."""


class LLMError(CatalystDeskError):
    """The language model call failed after all retries."""


class LLMTimeoutError(LLMError):
    """The language model call exceeded its timeout."""


class PriceLookupError(CatalystDeskError):
    """A price provider returned nothing usable for a ticker."""


class StoreError(CatalystDeskError):
    """A persistence operation was refused or failed."""
