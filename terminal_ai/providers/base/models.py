"""
Provider-agnostic domain models (DTOs) for the dispatch layer.

These dataclasses define the normalized contract between the CLI, the provider
registry and the fallback orchestrator:

- ProviderIdentity / ProviderPolicy: who a provider is and how it is tried
- RoutingMode: Direct or AggregatedWithOrder (BYOK routing for the aggregator)
- ChatRequest / ResponseEnvelope: the logical request and the decoded reply
- FailureCategory / AttemptOutcome: classification of a single failed attempt

Design goals
- Pure data: no network or file access here.
- JSON-friendly: policies round-trip through providers.json via to_dict/from_dict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union


# The single provider that multiplexes across upstream vendors.
AGGREGATOR_PROVIDER = "openrouter"

Role = Literal["system", "user", "assistant"]


class FailureCategory(str, Enum):
    """Classified reason for a failed attempt. Derived, never persisted."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


def normalize_provider_key(name: str) -> str:
    """
    Normalize an upstream sub-provider name into a model-override key.

    'Google AI Studio' -> 'google_ai_studio', 'z.ai' -> 'zai'
    """
    key = (name or "").lower().replace(" ", "_").replace("-", "_")
    return re.sub(r"[^a-z0-9_]", "", key)


@dataclass(frozen=True)
class ProviderIdentity:
    """Network identity of a provider. An empty api_key means 'unusable'."""

    name: str
    endpoint: str
    model: str
    api_key: str = ""

    @property
    def usable(self) -> bool:
        return bool(self.api_key)

    def __repr__(self) -> str:  # keep credentials out of logs and tracebacks
        return f"ProviderIdentity(name={self.name!r}, endpoint={self.endpoint!r}, model={self.model!r})"


@dataclass
class BYOKPolicy:
    """
    Bring-your-own-key routing record for the aggregator provider.

    provider_order is the routing preference sent upstream; models maps a
    normalized sub-provider name to a model slug override (absent = default model).
    """

    enabled: bool = False
    provider_order: List[str] = field(default_factory=list)
    allow_fallback_to_shared: bool = True
    models: Dict[str, str] = field(default_factory=dict)

    def model_for(self, sub_provider: str) -> Optional[str]:
        return self.models.get(normalize_provider_key(sub_provider)) or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "provider_order": list(self.provider_order),
            "allow_fallback_to_shared": self.allow_fallback_to_shared,
            "models": dict(self.models),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BYOKPolicy":
        return cls(
            enabled=bool(data.get("enabled", False)),
            provider_order=[str(p) for p in (data.get("provider_order") or [])],
            allow_fallback_to_shared=bool(data.get("allow_fallback_to_shared", True)),
            models={str(k): str(v) for k, v in (data.get("models") or {}).items()},
        )


@dataclass(frozen=True)
class Direct:
    """Plain model/messages/stream routing."""


@dataclass(frozen=True)
class AggregatedWithOrder:
    """Aggregator routing with a caller-supplied upstream order."""

    order: Tuple[str, ...]
    model_overrides: Tuple[Tuple[str, str], ...] = ()
    allow_fallback_to_shared: bool = True

    def model_for(self, sub_provider: str) -> Optional[str]:
        return dict(self.model_overrides).get(normalize_provider_key(sub_provider))


RoutingMode = Union[Direct, AggregatedWithOrder]


@dataclass
class ProviderPolicy:
    """
    How a provider participates in fallback. Persisted in providers.json.

    max_retries counts retries in addition to the first attempt.
    """

    priority: int = 1
    enabled: bool = True
    max_retries: int = 2
    gopass_key: str = ""
    env_key: str = ""
    endpoint_key: str = ""
    model_key: str = ""
    byok: bool = False
    description: str = ""
    byok_config: Optional[BYOKPolicy] = None

    def routing_mode(self, provider_name: str) -> RoutingMode:
        cfg = self.byok_config
        if provider_name != AGGREGATOR_PROVIDER or cfg is None or not cfg.enabled:
            return Direct()
        return AggregatedWithOrder(
            order=tuple(cfg.provider_order),
            model_overrides=tuple(sorted(cfg.models.items())),
            allow_fallback_to_shared=cfg.allow_fallback_to_shared,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("byok_config")
        if self.byok_config is not None:
            data["byok_config"] = self.byok_config.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderPolicy":
        byok_raw = data.get("byok_config")
        return cls(
            priority=int(data.get("priority", 1)),
            enabled=bool(data.get("enabled", True)),
            max_retries=max(0, int(data.get("max_retries", 2))),
            gopass_key=str(data.get("gopass_key") or ""),
            env_key=str(data.get("env_key") or ""),
            endpoint_key=str(data.get("endpoint_key") or ""),
            model_key=str(data.get("model_key") or ""),
            byok=bool(data.get("byok", False)),
            description=str(data.get("description") or ""),
            byok_config=BYOKPolicy.from_dict(byok_raw) if isinstance(byok_raw, dict) else None,
        )


@dataclass
class ProviderGlobalConfig:
    """Top-level providers.json document."""

    default_provider: str = AGGREGATOR_PROVIDER
    fallback_enabled: bool = True
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    providers: Dict[str, ProviderPolicy] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_provider": self.default_provider,
            "fallback_enabled": self.fallback_enabled,
            "retry_attempts": self.retry_attempts,
            "retry_delay_ms": self.retry_delay_ms,
            "providers": {name: p.to_dict() for name, p in self.providers.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderGlobalConfig":
        return cls(
            default_provider=str(data.get("default_provider") or AGGREGATOR_PROVIDER),
            fallback_enabled=bool(data.get("fallback_enabled", True)),
            retry_attempts=int(data.get("retry_attempts", 3)),
            retry_delay_ms=max(0, int(data.get("retry_delay_ms", 1000))),
            providers={
                str(name): ProviderPolicy.from_dict(p or {})
                for name, p in (data.get("providers") or {}).items()
            },
        )


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """
    Logical chat request. Message order is conversational order and is sent verbatim.

    An empty model means 'use each candidate provider's own model'.
    """

    messages: Tuple[Message, ...]
    model: str = ""
    stream: bool = False

    def for_provider(self, identity: ProviderIdentity) -> "ChatRequest":
        if self.model:
            return self
        return replace(self, model=identity.model)


@dataclass(frozen=True)
class APIError:
    message: str = ""
    type: str = ""


@dataclass(frozen=True)
class Choice:
    message: Message


@dataclass(frozen=True)
class ResponseEnvelope:
    """
    Decoded provider reply: candidate completions or an error record.

    Zero choices and no error means 'no content produced', not a protocol error.
    """

    choices: Tuple[Choice, ...] = ()
    error: Optional[APIError] = None
    http_status: Optional[int] = None

    @property
    def has_error(self) -> bool:
        return self.error is not None and bool(self.error.message)

    @property
    def text(self) -> str:
        return self.choices[0].message.content if self.choices else ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseEnvelope":
        choices: List[Choice] = []
        raw_choices = data.get("choices")
        for raw in raw_choices if isinstance(raw_choices, list) else []:
            if not isinstance(raw, dict):
                continue
            msg = raw.get("message") or {}
            if not isinstance(msg, dict):
                continue
            choices.append(
                Choice(message=Message(role=str(msg.get("role") or "assistant"), content=str(msg.get("content") or "")))
            )
        err = data.get("error")
        error = None
        if isinstance(err, dict):
            error = APIError(message=str(err.get("message") or ""), type=str(err.get("type") or err.get("code") or ""))
        elif isinstance(err, str):
            error = APIError(message=err)
        return cls(choices=tuple(choices), error=error)


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one attempt against one provider, kept for the duration of a dispatch."""

    provider: str
    attempt: int
    succeeded: bool
    category: Optional[FailureCategory] = None
    error: str = ""


@dataclass
class DispatchResult:
    """What a successful dispatch hands back to the caller."""

    provider: str
    envelope: Optional[ResponseEnvelope] = None
    text: str = ""
    attempts: List[AttemptOutcome] = field(default_factory=list)
    is_fallback: bool = False
