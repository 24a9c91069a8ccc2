"""
Response decoders.

Buffered mode
- decode_buffered(): whole body -> ResponseEnvelope. Unparseable bodies yield an
  empty envelope ("no content"), not an error. An HTTP error status without an
  error record gets one synthesized from the status line.

Streaming mode
- iter_lines(): reassembles lines from arbitrarily split byte chunks.
- decode_events(): lazy, finite sequence of StreamEvent decoded from "data:" lines.
  Ends at the [DONE] sentinel, at the first error record, or at end of input.
- collect_stream(): the fold that forwards deltas to the caller and accumulates
  the full text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

from terminal_ai.providers.base.models import APIError, ResponseEnvelope

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
STREAM_ERROR_FALLBACK = "provider reported an error without a message"


def synthesize_http_error(envelope: ResponseEnvelope, status: Optional[int], reason: str = "") -> ResponseEnvelope:
    """Attach an error record for HTTP >= 400 replies that did not carry one."""
    if status is None or status < 400 or envelope.has_error:
        return ResponseEnvelope(choices=envelope.choices, error=envelope.error, http_status=status)
    message = f"HTTP {status}: {reason}".rstrip(": ").strip()
    return ResponseEnvelope(
        choices=envelope.choices,
        error=APIError(message=message, type=f"http_{status}"),
        http_status=status,
    )


def decode_buffered(body: bytes, status: Optional[int] = None, reason: str = "") -> ResponseEnvelope:
    try:
        data = json.loads(body.decode("utf-8", errors="replace")) if body else None
    except ValueError:
        data = None
    if isinstance(data, dict):
        envelope = ResponseEnvelope.from_dict(data)
    else:
        if body:
            logger.debug(f"Unparseable response body ({len(body)} bytes); treating as no content")
        envelope = ResponseEnvelope()
    return synthesize_http_error(envelope, status, reason)


# -------------------- streaming --------------------


@dataclass(frozen=True)
class Delta:
    text: str


@dataclass(frozen=True)
class StreamError:
    message: str
    type: str = ""


@dataclass(frozen=True)
class StreamEnd:
    saw_sentinel: bool


StreamEvent = Union[Delta, StreamError, StreamEnd]


def iter_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """
    Yield complete text lines from raw chunks. A trailing line without a newline
    is yielded at end of input. Lines are split on bytes so multi-byte characters
    broken across chunks decode intact.
    """
    buffer = b""
    for chunk in chunks:
        if not chunk:
            continue
        buffer += chunk
        while True:
            idx = buffer.find(b"\n")
            if idx == -1:
                break
            line, buffer = buffer[:idx], buffer[idx + 1:]
            yield line.decode("utf-8", errors="replace")
    if buffer:
        yield buffer.decode("utf-8", errors="replace")


def _delta_text(frame: Dict[str, Any]) -> str:
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def decode_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    for raw in lines:
        line = raw.strip()
        if not line or not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            yield StreamEnd(saw_sentinel=True)
            return
        try:
            frame = json.loads(data)
        except ValueError:
            continue
        if not isinstance(frame, dict):
            continue

        err = frame.get("error")
        # Any error record aborts the stream, even one without a message.
        if isinstance(err, dict):
            kind = str(err.get("type") or err.get("code") or "")
            yield StreamError(message=str(err.get("message") or kind or STREAM_ERROR_FALLBACK), type=kind)
            return
        if err:
            yield StreamError(message=str(err))
            return

        text = _delta_text(frame)
        if text:
            yield Delta(text)
    yield StreamEnd(saw_sentinel=False)


@dataclass
class StreamResult:
    text: str
    saw_sentinel: bool
    error: Optional[StreamError] = None


def collect_stream(
    events: Iterable[StreamEvent],
    on_delta: Optional[Callable[[str], None]] = None,
    accumulate: bool = True,
) -> StreamResult:
    """
    Fold decoded events: forward each delta to on_delta and accumulate text.
    Stops at the first StreamError, which is returned in the result.
    """
    parts = []
    for event in events:
        if isinstance(event, Delta):
            if on_delta is not None:
                on_delta(event.text)
            if accumulate:
                parts.append(event.text)
        elif isinstance(event, StreamError):
            return StreamResult(text="".join(parts), saw_sentinel=False, error=event)
        elif isinstance(event, StreamEnd):
            return StreamResult(text="".join(parts), saw_sentinel=event.saw_sentinel)
    return StreamResult(text="".join(parts), saw_sentinel=False)
