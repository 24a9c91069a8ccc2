"""
Dispatch service port. The chat layer and CLI depend on this; the fallback
orchestrator implements it.
"""
from __future__ import annotations
from typing import Protocol, TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from terminal_ai.infrastructure.llm.cancellation import CancelToken
    from terminal_ai.providers.base.models import AttemptOutcome, ChatRequest, DispatchResult

class IDispatcher(Protocol):
    def dispatch(
        self,
        request: "ChatRequest",
        cancel: Optional["CancelToken"] = None,
        on_attempt: Optional[Callable[["AttemptOutcome"], None]] = None,
        prefer: Optional[str] = None,
    ) -> "DispatchResult":
        ...
    def dispatch_stream(
        self,
        request: "ChatRequest",
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional["CancelToken"] = None,
        on_attempt: Optional[Callable[["AttemptOutcome"], None]] = None,
        accumulate: bool = True,
        prefer: Optional[str] = None,
    ) -> "DispatchResult":
        """
        Streaming interface. Implementations should:
        - Call on_delta(text_fragment) as new content arrives
        - Return the accumulated text in DispatchResult.text
        """
        ...

__all__ = ["IDispatcher"]
