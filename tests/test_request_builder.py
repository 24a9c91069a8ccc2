import json

import pytest

from terminal_ai.infrastructure.llm.request_builder import build_headers, build_payload, build_request
from terminal_ai.providers.base.models import (
    AggregatedWithOrder,
    BYOKPolicy,
    ChatRequest,
    Direct,
    Message,
    ProviderIdentity,
    ProviderPolicy,
)
from terminal_ai.providers.exceptions import RequestBuildError

MESSAGES = (
    Message(role="system", content="be brief"),
    Message(role="user", content="hi"),
    Message(role="assistant", content="hello"),
    Message(role="user", content="again"),
)


def _ident(name):
    return ProviderIdentity(name=name, endpoint=f"https://{name}.test", model=f"{name}-m", api_key="k")


def test_direct_payload_preserves_message_order_and_omits_stream():
    payload = build_payload(ChatRequest(messages=MESSAGES, model="m"), Direct())
    assert payload == {
        "model": "m",
        "messages": [m.to_dict() for m in MESSAGES],
    }


def test_stream_flag_present_only_when_true():
    payload = build_payload(ChatRequest(messages=MESSAGES, model="m", stream=True), Direct())
    assert payload["stream"] is True


def test_byok_payload_carries_order_and_fallback_verbatim():
    routing = AggregatedWithOrder(order=("Cerebras", "SambaNova"), allow_fallback_to_shared=False)
    payload = build_payload(ChatRequest(messages=MESSAGES, model="m"), routing)
    assert payload["provider"] == {"allow_fallbacks": False, "order": ["Cerebras", "SambaNova"]}
    assert payload["model"] == "m"


def test_inactive_byok_yields_plain_payload():
    policy = ProviderPolicy(byok_config=BYOKPolicy(enabled=False, provider_order=["Groq"]))
    built = build_request(ChatRequest(messages=MESSAGES, model="m"), _ident("openrouter"), policy.routing_mode("openrouter"))
    assert "provider" not in json.loads(built.body)


def test_aggregated_routing_ignored_for_other_providers():
    routing = AggregatedWithOrder(order=("Groq",))
    built = build_request(ChatRequest(messages=MESSAGES, model="m"), _ident("groq"), routing)
    assert "provider" not in json.loads(built.body)


def test_routing_mode_only_for_aggregator():
    policy = ProviderPolicy(byok_config=BYOKPolicy(enabled=True, provider_order=["Groq"], models={"groq": "groq/x"}))
    mode = policy.routing_mode("openrouter")
    assert isinstance(mode, AggregatedWithOrder)
    assert mode.order == ("Groq",)
    assert mode.model_for("Groq") == "groq/x"
    assert isinstance(policy.routing_mode("gemini"), Direct)
    assert isinstance(ProviderPolicy().routing_mode("openrouter"), Direct)


def test_headers_table():
    agg = build_headers(_ident("openrouter"))
    assert agg["Authorization"] == "Bearer k"
    assert agg["HTTP-Referer"] == "https://terminal-ai.local"
    assert agg["X-Title"] == "Terminal AI CLI"

    google = build_headers(_ident("gemini"))
    assert google["x-goog-api-key"] == "k"
    assert "Authorization" not in google

    other = build_headers(_ident("groq"))
    assert other["Authorization"] == "Bearer k"
    assert "X-Title" not in other
    for h in (agg, google, other):
        assert h["Content-Type"] == "application/json"


def test_streaming_request_asks_for_event_stream():
    built = build_request(ChatRequest(messages=MESSAGES, model="m", stream=True), _ident("groq"))
    assert built.headers["Accept"] == "text/event-stream"
    assert built.url == "https://groq.test"


def test_unserializable_payload_is_build_error():
    with pytest.raises(RequestBuildError) as exc:
        build_request(ChatRequest(messages=MESSAGES, model=object()), _ident("groq"))
    assert exc.value.category == "build_error"


def test_empty_request_model_uses_provider_model():
    req = ChatRequest(messages=MESSAGES)
    assert req.for_provider(_ident("groq")).model == "groq-m"
    assert ChatRequest(messages=MESSAGES, model="x").for_provider(_ident("groq")).model == "x"


def test_identity_repr_hides_key():
    assert "k'" not in repr(ProviderIdentity(name="a", endpoint="e", model="m", api_key="k"))
