"""
Retry/Fallback Orchestrator

For each candidate provider in priority order:
  SelectProvider -> Attempt -> Evaluate -> {Retry | NextProvider | Success | Exhausted}

- Providers without a credential are skipped (logged, no retry budget consumed).
- An attempt succeeds when there is no transport error and the decoded envelope
  carries no error message. The first success ends the dispatch.
- Every classified failure is retried on the same provider up to max_retries times,
  each retry preceded by the fixed retry_delay_ms. A payload that cannot be built
  is recorded as 'unknown' and the provider's remaining retries are skipped.
- When no candidate remains, ProvidersExhaustedError names the last provider,
  its last category and message.

Streaming dispatch reuses the same loop until a 2xx event stream is open. From
then on the stream belongs to the caller: an in-stream error raises
StreamAbortedError and is never retried or failed over.

Exactly one request is in flight at a time. The registry is read once per
dispatch through an immutable snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Optional, Tuple

import requests

from terminal_ai.infrastructure.llm.cancellation import CancelToken
from terminal_ai.infrastructure.llm.decoders import collect_stream, decode_buffered, decode_events, iter_lines
from terminal_ai.infrastructure.llm.errors import classify_error, combine_errors
from terminal_ai.infrastructure.llm.request_builder import build_request
from terminal_ai.providers.base.interfaces import Transport, TransportResponse
from terminal_ai.providers.base.models import (
    AttemptOutcome,
    ChatRequest,
    DispatchResult,
    FailureCategory,
    ProviderIdentity,
    ProviderPolicy,
    ResponseEnvelope,
)
from terminal_ai.providers.exceptions import (
    DispatchCancelled,
    NoEligibleProviderError,
    ProviderConfigError,
    ProvidersExhaustedError,
    RequestBuildError,
    StreamAbortedError,
)
from terminal_ai.providers.registry import ProviderRegistry, RegistrySnapshot

logger = logging.getLogger(__name__)

# Failures raised by a transport; anything else is a programming error and propagates.
TRANSPORT_ERRORS: Tuple[type, ...] = (requests.exceptions.RequestException, OSError)

AttemptListener = Callable[[AttemptOutcome], None]


@dataclass
class _Attempt:
    outcome: AttemptOutcome
    envelope: Optional[ResponseEnvelope] = None
    response: Optional[TransportResponse] = None  # open event stream on streaming success
    fatal: bool = False  # skip remaining retries of this provider


class FallbackOrchestrator:
    def __init__(self, registry: ProviderRegistry, transport: Transport) -> None:
        self.registry = registry
        self.transport = transport

    # -------------------- public API --------------------

    def dispatch(
        self,
        request: ChatRequest,
        cancel: Optional[CancelToken] = None,
        on_attempt: Optional[AttemptListener] = None,
        prefer: Optional[str] = None,
    ) -> DispatchResult:
        """Buffered dispatch with retry and fallback. Returns the first successful envelope."""
        request = replace(request, stream=False)
        token = cancel or CancelToken()
        name, attempt, attempts, is_fallback = self._run(self.registry.snapshot(), request, token, on_attempt, prefer)
        envelope = attempt.envelope or ResponseEnvelope()
        return DispatchResult(provider=name, envelope=envelope, text=envelope.text, attempts=attempts, is_fallback=is_fallback)

    def dispatch_stream(
        self,
        request: ChatRequest,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional[CancelToken] = None,
        on_attempt: Optional[AttemptListener] = None,
        accumulate: bool = True,
        prefer: Optional[str] = None,
    ) -> DispatchResult:
        """
        Streaming dispatch. Fragments are forwarded to on_delta as they arrive; the
        returned result carries the accumulated text (empty if accumulate=False).
        """
        request = replace(request, stream=True)
        token = cancel or CancelToken()
        name, attempt, attempts, is_fallback = self._run(self.registry.snapshot(), request, token, on_attempt, prefer)
        response = attempt.response
        if response is None:
            raise StreamAbortedError(name, "provider accepted the request but returned no event stream")
        result = self._consume_stream(name, response, token, on_delta, accumulate)
        return DispatchResult(provider=name, text=result, attempts=attempts, is_fallback=is_fallback)

    def try_provider(self, name: str, request: ChatRequest, cancel: Optional[CancelToken] = None) -> DispatchResult:
        """
        Single buffered attempt against one provider: no retries, no fallback.
        Used by 'provider test' and 'byok test'.
        """
        snap = self.registry.snapshot()
        policy = snap.policy(name)
        identity = snap.identity(name)
        if not policy.enabled:
            raise ProviderConfigError(f"Provider '{name}' is disabled")
        if not identity.usable:
            raise NoEligibleProviderError([name])
        token = cancel or CancelToken()
        attempt = self._attempt(identity, policy, replace(request, stream=False), token, 1)
        if not attempt.outcome.succeeded:
            raise ProvidersExhaustedError(name, attempt.outcome.category, attempt.outcome.error, [attempt.outcome])
        envelope = attempt.envelope or ResponseEnvelope()
        return DispatchResult(provider=name, envelope=envelope, text=envelope.text, attempts=[attempt.outcome])

    # -------------------- state machine --------------------

    def _run(
        self,
        snap: RegistrySnapshot,
        request: ChatRequest,
        token: CancelToken,
        on_attempt: Optional[AttemptListener],
        prefer: Optional[str] = None,
    ) -> Tuple[str, _Attempt, List[AttemptOutcome], bool]:
        attempts: List[AttemptOutcome] = []
        skipped: List[str] = []
        first_tried: Optional[str] = None
        last: Optional[AttemptOutcome] = None
        delay = snap.retry_delay_seconds

        for name in snap.candidates(prefer):
            identity = snap.identity(name)
            if not identity.usable:
                logger.info(f"Skipping provider {name}: no API key configured")
                skipped.append(name)
                continue
            policy = snap.policy(name)
            if first_tried is None:
                first_tried = name
            elif last is not None:
                logger.warning(f"Falling back to provider {name} after {last.provider} failed ({last.category.value})")

            for attempt_no in range(1, policy.max_retries + 2):
                if attempt_no > 1:
                    logger.info(f"Retrying {name} (attempt {attempt_no}/{policy.max_retries + 1}) in {delay:.1f}s")
                    if token.wait(delay):
                        raise DispatchCancelled("dispatch cancelled during retry delay")
                token.raise_if_cancelled()

                attempt = self._attempt(identity, policy, request, token, attempt_no)
                attempts.append(attempt.outcome)
                if on_attempt is not None:
                    on_attempt(attempt.outcome)
                if attempt.outcome.succeeded:
                    return name, attempt, attempts, name != first_tried

                last = attempt.outcome
                logger.warning(
                    f"Provider {name} attempt {attempt_no} failed ({last.category.value}): {last.error}"
                )
                if attempt.fatal:
                    break

        if last is None:
            logger.error("No eligible provider for dispatch")
            raise NoEligibleProviderError(skipped)
        logger.error(f"All providers failed; last was {last.provider} ({last.category.value})")
        raise ProvidersExhaustedError(last.provider, last.category, last.error, attempts)

    def _attempt(
        self,
        identity: ProviderIdentity,
        policy: ProviderPolicy,
        request: ChatRequest,
        token: CancelToken,
        attempt_no: int,
    ) -> _Attempt:
        name = identity.name
        try:
            built = build_request(request.for_provider(identity), identity, policy.routing_mode(name))
        except RequestBuildError as e:
            outcome = AttemptOutcome(name, attempt_no, False, FailureCategory.UNKNOWN, str(e))
            return _Attempt(outcome=outcome, fatal=True)

        response: Optional[TransportResponse] = None
        unregister: Callable[[], None] = lambda: None
        keep_open = False
        try:
            # Bodies are always read after post() returns so cancel() can close a blocked read.
            response = self.transport.post(built.url, built.body, built.headers, stream=True)
            unregister = token.on_cancel(response.close)
            status = response.status_code
            if request.stream and status < 400:
                keep_open = True
                outcome = AttemptOutcome(name, attempt_no, True)
                return _Attempt(outcome=outcome, response=response)
            envelope = decode_buffered(response.read(), status, response.reason)
        except TRANSPORT_ERRORS as e:
            if token.cancelled:
                raise DispatchCancelled("dispatch cancelled") from e
            category = classify_error(e, None)
            return _Attempt(outcome=AttemptOutcome(name, attempt_no, False, category, combine_errors(e, None)))
        finally:
            unregister()
            if response is not None and not keep_open:
                response.close()

        token.raise_if_cancelled()
        if not envelope.has_error:
            return _Attempt(outcome=AttemptOutcome(name, attempt_no, True), envelope=envelope)
        category = classify_error(None, envelope)
        outcome = AttemptOutcome(name, attempt_no, False, category, combine_errors(None, envelope))
        return _Attempt(outcome=outcome, envelope=envelope)

    # -------------------- streaming --------------------

    def _consume_stream(
        self,
        name: str,
        response: TransportResponse,
        token: CancelToken,
        on_delta: Optional[Callable[[str], None]],
        accumulate: bool,
    ) -> str:
        unregister = token.on_cancel(response.close)
        try:
            events = decode_events(iter_lines(self._chunks(response, token)))
            result = collect_stream(events, on_delta=on_delta, accumulate=accumulate)
        except TRANSPORT_ERRORS as e:
            if token.cancelled:
                raise DispatchCancelled("stream cancelled") from e
            raise StreamAbortedError(name, combine_errors(e, None), classify_error(e, None).value) from e
        finally:
            unregister()
            response.close()

        token.raise_if_cancelled()
        if result.error is not None:
            logger.error(f"Stream from {name} aborted: {result.error.message}")
            raise StreamAbortedError(name, result.error.message, result.error.type, partial_text=result.text)
        if not result.saw_sentinel:
            logger.debug(f"Stream from {name} ended without [DONE]")
        return result.text

    @staticmethod
    def _chunks(response: TransportResponse, token: CancelToken) -> Iterator[bytes]:
        for chunk in response.iter_chunks():
            if token.cancelled:
                return
            yield chunk
