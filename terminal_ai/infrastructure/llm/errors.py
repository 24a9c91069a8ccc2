"""
Error classification for provider attempts.

classify_error() maps a transport exception and/or a decoded ResponseEnvelope to
exactly one FailureCategory. It is a pure function: no I/O, no logging, and the
same (error, envelope) pair always yields the same category.

Precedence:
1. transport error reads as a deadline/timeout      -> timeout
2. transport error reads as a connection failure    -> network
3. error envelope carries a rate-limit marker       -> rate_limit
4. any other error envelope                         -> server_error
5. otherwise                                        -> unknown
"""

from __future__ import annotations

from typing import Optional

import requests

from terminal_ai.providers.base.models import FailureCategory, ResponseEnvelope

TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")
NETWORK_MARKERS = ("connection", "network")
RATE_LIMIT_TYPE_MARKERS = ("rate_limit", "ratelimit", "rate-limit")
RATE_LIMIT_MESSAGE_MARKERS = ("rate limit", "429")


def _transport_category(err: BaseException) -> Optional[FailureCategory]:
    # Timeout checks come first: requests reports a read timeout on a streamed
    # body as ConnectionError(ReadTimeoutError(...)), and ConnectTimeout is both.
    text = str(err).lower()
    if isinstance(err, (requests.exceptions.Timeout, TimeoutError)) or any(m in text for m in TIMEOUT_MARKERS):
        return FailureCategory.TIMEOUT
    if isinstance(err, (requests.exceptions.ConnectionError, ConnectionError)) or any(m in text for m in NETWORK_MARKERS):
        return FailureCategory.NETWORK
    return None


def classify_error(err: Optional[BaseException], envelope: Optional[ResponseEnvelope]) -> FailureCategory:
    if err is not None:
        category = _transport_category(err)
        if category is not None:
            return category

    if envelope is not None and envelope.error is not None:
        kind = (envelope.error.type or "").lower()
        message = (envelope.error.message or "").lower()
        if any(m in kind for m in RATE_LIMIT_TYPE_MARKERS) or any(m in message for m in RATE_LIMIT_MESSAGE_MARKERS):
            return FailureCategory.RATE_LIMIT
        return FailureCategory.SERVER_ERROR

    return FailureCategory.UNKNOWN


def combine_errors(err: Optional[BaseException], envelope: Optional[ResponseEnvelope]) -> str:
    """Single human-readable line for an attempt's failure."""
    api_message = envelope.error.message if envelope is not None and envelope.error is not None else ""
    if err is not None and api_message:
        return f"{err}: {api_message}"
    if err is not None:
        return str(err) or type(err).__name__
    if api_message:
        return api_message
    return "unknown error"
