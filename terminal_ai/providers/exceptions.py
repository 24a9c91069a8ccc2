"""
Exception types for provider dispatch.

Per-attempt failures are recovered inside the orchestrator; only the types
below ever reach the caller.
"""

from __future__ import annotations

from typing import List, Optional

from .base.models import AttemptOutcome, FailureCategory


class ProviderError(Exception):
    """Base class for everything raised by the dispatch layer."""


class UnknownProviderError(ProviderError):
    pass


class ProviderConfigError(ProviderError):
    pass


class RequestBuildError(ProviderError):
    """Payload serialization failed before any network call (build_error)."""

    category = "build_error"


class DispatchCancelled(ProviderError):
    """The caller's cancellation token fired or its deadline passed."""


class StreamAbortedError(ProviderError):
    """A provider reported an error inside an already-open event stream."""

    def __init__(self, provider: str, message: str, error_type: str = "", partial_text: str = "") -> None:
        super().__init__(f"API Error from {provider}: {message}")
        self.provider = provider
        self.message = message
        self.error_type = error_type
        self.partial_text = partial_text


class ProvidersExhaustedError(ProviderError):
    """
    Every eligible provider failed (exhausted).

    Carries the last provider attempted, its last classified category and
    message, plus the full attempt log of the dispatch.
    """

    category = "exhausted"

    def __init__(
        self,
        last_provider: Optional[str],
        last_category: Optional[FailureCategory],
        last_message: str,
        attempts: Optional[List[AttemptOutcome]] = None,
    ) -> None:
        self.last_provider = last_provider
        self.last_category = last_category
        self.last_message = last_message
        self.attempts = list(attempts or [])
        super().__init__(self._format())

    def _format(self) -> str:
        if not self.last_provider:
            return f"all providers failed. Last error: {self.last_message or 'no eligible provider'}"
        category = self.last_category.value if self.last_category else "unknown"
        return f"all providers failed. Last error: provider {self.last_provider} ({category}): {self.last_message}"


class NoEligibleProviderError(ProvidersExhaustedError):
    """No enabled provider with a usable credential was available."""

    def __init__(self, skipped: Optional[List[str]] = None) -> None:
        self.skipped = list(skipped or [])
        detail = "no eligible provider"
        if self.skipped:
            detail += f" (skipped without API key: {', '.join(self.skipped)})"
        super().__init__(None, None, detail)


__all__ = [
    "ProviderError",
    "UnknownProviderError",
    "ProviderConfigError",
    "RequestBuildError",
    "DispatchCancelled",
    "StreamAbortedError",
    "ProvidersExhaustedError",
    "NoEligibleProviderError",
]
