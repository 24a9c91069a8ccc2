"""
Request Builder

Serializes a logical ChatRequest into the wire payload and header set for one
target provider.

Payload shapes
- Direct:              {"model", "messages", "stream"?}
- AggregatedWithOrder: {"model", "messages", "stream"?, "provider": {"allow_fallbacks", "order"}}

"stream" is only present when true. The model field is always taken from the
request; BYOK model overrides are applied by the caller before building.

Headers come from AUTH_HEADERS, a closed table keyed by provider name. A provider
with nonstandard auth gets a new table entry; call sites do not change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict

from terminal_ai.providers.base.models import (
    AGGREGATOR_PROVIDER,
    AggregatedWithOrder,
    ChatRequest,
    Direct,
    ProviderIdentity,
    RoutingMode,
)
from terminal_ai.providers.exceptions import RequestBuildError

AGGREGATOR_REFERER = "https://terminal-ai.local"
AGGREGATOR_TITLE = "Terminal AI CLI"


def _bearer(api_key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"}


def _aggregator(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "HTTP-Referer": AGGREGATOR_REFERER,
        "X-Title": AGGREGATOR_TITLE,
    }


def _google(api_key: str) -> Dict[str, str]:
    return {"x-goog-api-key": api_key}


AUTH_HEADERS: Dict[str, Callable[[str], Dict[str, str]]] = {
    AGGREGATOR_PROVIDER: _aggregator,
    "gemini": _google,
}


@dataclass(frozen=True)
class BuiltRequest:
    url: str
    body: bytes
    headers: Dict[str, str]


def build_payload(request: ChatRequest, routing: RoutingMode) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "model": request.model,
        "messages": [m.to_dict() for m in request.messages],
    }
    if request.stream:
        payload["stream"] = True
    if isinstance(routing, AggregatedWithOrder):
        payload["provider"] = {
            "allow_fallbacks": routing.allow_fallback_to_shared,
            "order": list(routing.order),
        }
    return payload


def build_headers(identity: ProviderIdentity) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    auth = AUTH_HEADERS.get(identity.name, _bearer)
    headers.update(auth(identity.api_key))
    return headers


def build_request(request: ChatRequest, identity: ProviderIdentity, routing: RoutingMode = Direct()) -> BuiltRequest:
    """
    Build the wire request for identity.

    Raises RequestBuildError if the payload cannot be serialized; nothing is sent.
    """
    if identity.name != AGGREGATOR_PROVIDER:
        routing = Direct()
    payload = build_payload(request, routing)
    try:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise RequestBuildError(f"failed to serialize request for {identity.name}: {e}") from e

    headers = build_headers(identity)
    if request.stream:
        headers["Accept"] = "text/event-stream"
    return BuiltRequest(url=identity.endpoint, body=body, headers=headers)
