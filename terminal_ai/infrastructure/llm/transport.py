"""
HTTP transport backed by requests.

Implements the Transport protocol from terminal_ai/providers/base/interfaces.py.
HTTP error statuses are returned to the caller; only transport-level failures
(DNS, connect, read timeout) raise.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


class RequestsResponse:
    """Adapter from requests.Response to TransportResponse."""

    def __init__(self, resp: requests.Response) -> None:
        self._resp = resp

    @property
    def status_code(self) -> int:
        return self._resp.status_code

    @property
    def reason(self) -> str:
        return self._resp.reason or ""

    def read(self) -> bytes:
        return self._resp.content

    def iter_chunks(self) -> Iterator[bytes]:
        # chunk_size=None yields data as soon as it arrives on a streamed response
        for chunk in self._resp.iter_content(chunk_size=None):
            if chunk:
                yield chunk

    def close(self) -> None:
        self._resp.close()


class RequestsTransport:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def post(
        self,
        url: str,
        body: bytes,
        headers: Dict[str, str],
        *,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> RequestsResponse:
        if not url:
            raise requests.exceptions.InvalidURL("provider endpoint is not configured")
        logger.debug(f"POST {url} (stream={stream}, {len(body)} bytes)")
        resp = self.session.post(
            url,
            data=body,
            headers=headers,
            stream=stream,
            timeout=timeout if timeout is not None else self.timeout,
        )
        return RequestsResponse(resp)

    def close(self) -> None:
        self.session.close()
