"""
Aggregator and exports for provider package.
"""

# Re-export exception types
from .exceptions import (
    ProviderError,
    UnknownProviderError,
    ProviderConfigError,
    RequestBuildError,
    DispatchCancelled,
    StreamAbortedError,
    ProvidersExhaustedError,
    NoEligibleProviderError,
)

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
