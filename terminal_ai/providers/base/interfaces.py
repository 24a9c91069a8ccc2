"""
Provider-agnostic interfaces (Protocols) for the dispatch layer.

Boundary contracts the orchestrator depends on:
- Transport: performs one HTTPS POST and hands back a TransportResponse
- TransportResponse: status + body, either whole or as raw read chunks

The concrete implementation lives in terminal_ai/infrastructure/llm/transport.py.
Tests substitute fakes.
"""

from __future__ import annotations

from typing import Dict, Iterator, Optional, Protocol, runtime_checkable


@runtime_checkable
class TransportResponse(Protocol):
    """A single HTTP response owned by the caller until close() is called."""

    @property
    def status_code(self) -> int:
        ...

    @property
    def reason(self) -> str:
        ...

    def read(self) -> bytes:
        """Read and return the entire body."""
        ...

    def iter_chunks(self) -> Iterator[bytes]:
        """
        Yield the body as arbitrarily split byte chunks as they arrive.

        Chunk boundaries carry no meaning; a line may span several chunks.
        """
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class Transport(Protocol):
    """Synchronous, blocking HTTP client. One call in flight at a time."""

    def post(
        self,
        url: str,
        body: bytes,
        headers: Dict[str, str],
        *,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        """
        POST body to url. Raises on transport-level failure (DNS, connect, timeout).
        HTTP error statuses are returned, not raised.
        """
        ...
