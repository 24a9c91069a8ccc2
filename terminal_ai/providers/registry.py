"""
Provider Registry

Purpose
- Single owner of provider identities (endpoint, model, credential) and the
  ProviderGlobalConfig (priority, enabled, retries, BYOK) loaded from providers.json.
- Hands the orchestrator an immutable RegistrySnapshot per dispatch, so
  configuration changes never affect a dispatch already in flight.

Identity resolution (per provider, at load/refresh time)
- endpoint: env[policy.endpoint_key] -> settings pref provider.<name>.endpoint -> built-in default
- model:    env[policy.model_key]    -> settings pref provider.<name>.model    -> built-in default
- api_key:  KeysRepository chain (env, gopass, settings) -> "" (unusable)

Mutations take the write lock, persist through ProviderConfigRepository and
raise ProviderConfigError / UnknownProviderError on invalid input.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from terminal_ai.providers.base.models import (
    AGGREGATOR_PROVIDER,
    BYOKPolicy,
    ProviderGlobalConfig,
    ProviderIdentity,
    ProviderPolicy,
    normalize_provider_key,
)
from terminal_ai.providers.base.repositories.keys import KeysRepository
from terminal_ai.providers.base.repositories.provider_config import ProviderConfigRepository
from terminal_ai.providers.exceptions import ProviderConfigError, UnknownProviderError
from terminal_ai.settings.interfaces import SettingsRepository

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS: Dict[str, str] = {
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
    "groq": "https://api.groq.com/openai/v1/chat/completions",
}

DEFAULT_MODELS: Dict[str, str] = {
    "openrouter": "openai/gpt-4o-mini",
    "gemini": "gemini-2.0-flash",
    "groq": "llama-3.3-70b-versatile",
}


def endpoint_pref_key(name: str) -> str:
    return f"provider.{name}.endpoint"


def model_pref_key(name: str) -> str:
    return f"provider.{name}.model"


def order_by_priority(providers: Mapping[str, ProviderPolicy]) -> List[str]:
    """
    Enabled provider names, ascending by priority. Equal priorities are ordered
    by name so the same policy set always resolves to the same order.
    """
    enabled = [(p.priority, name) for name, p in providers.items() if p.enabled]
    return [name for _, name in sorted(enabled)]


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of identities and policies taken at the start of a dispatch."""

    config: ProviderGlobalConfig
    identities: Dict[str, ProviderIdentity] = field(default_factory=dict)

    @property
    def retry_delay_seconds(self) -> float:
        return max(0, self.config.retry_delay_ms) / 1000.0

    def ordered_providers(self) -> List[str]:
        return order_by_priority(self.config.providers)

    def candidates(self, prefer: Optional[str] = None) -> List[str]:
        """
        Providers a dispatch may try, in order. prefer (if enabled) is moved to the
        front. With fallback disabled only prefer, or else the default provider, is
        eligible.
        """
        ordered = self.ordered_providers()
        first = prefer if prefer in ordered else None
        if not self.config.fallback_enabled:
            first = first or self.config.default_provider
            return [first] if first in ordered else []
        if first is None:
            return ordered
        return [first] + [n for n in ordered if n != first]

    def policy(self, name: str) -> ProviderPolicy:
        try:
            return self.config.providers[name]
        except KeyError:
            raise UnknownProviderError(f"Provider '{name}' not found") from None

    def identity(self, name: str) -> ProviderIdentity:
        ident = self.identities.get(name)
        if ident is None:
            raise UnknownProviderError(f"Provider '{name}' not initialized")
        return ident


class ProviderRegistry:
    def __init__(
        self,
        config_repo: Optional[ProviderConfigRepository] = None,
        keys: Optional[KeysRepository] = None,
        settings: Optional[SettingsRepository] = None,
        environ: Optional[Mapping[str, str]] = None,
        config: Optional[ProviderGlobalConfig] = None,
    ) -> None:
        self.config_repo = config_repo
        self.settings = settings
        self.environ = environ if environ is not None else os.environ
        self.keys = keys or KeysRepository(settings=settings, environ=self.environ)
        self._lock = threading.RLock()
        self._identities: Dict[str, ProviderIdentity] = {}
        if config is None:
            config = config_repo.load() if config_repo is not None else ProviderGlobalConfig()
        self._config = config
        self.refresh()

    # -------------------- read side --------------------

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(config=copy.deepcopy(self._config), identities=dict(self._identities))

    def ordered_providers(self) -> List[str]:
        with self._lock:
            return order_by_priority(self._config.providers)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._config.providers)

    @property
    def default_provider(self) -> str:
        with self._lock:
            return self._config.default_provider

    @property
    def fallback_enabled(self) -> bool:
        with self._lock:
            return self._config.fallback_enabled

    def get_policy(self, name: str) -> ProviderPolicy:
        with self._lock:
            return copy.deepcopy(self._policy(name))

    def get_identity(self, name: str) -> ProviderIdentity:
        with self._lock:
            self._policy(name)
            return self._identities[name]

    def byok_policy(self) -> Optional[BYOKPolicy]:
        with self._lock:
            policy = self._config.providers.get(AGGREGATOR_PROVIDER)
            if policy is None or policy.byok_config is None:
                return None
            return copy.deepcopy(policy.byok_config)

    # -------------------- identity resolution --------------------

    def refresh(self) -> None:
        """Re-resolve every identity (environment, settings and credentials)."""
        with self._lock:
            self._identities = {name: self._resolve(name, p) for name, p in self._config.providers.items()}

    def _resolve(self, name: str, policy: ProviderPolicy) -> ProviderIdentity:
        endpoint = self._lookup(policy.endpoint_key, endpoint_pref_key(name), DEFAULT_ENDPOINTS.get(name, ""))
        model = self._lookup(policy.model_key, model_pref_key(name), DEFAULT_MODELS.get(name, ""))
        api_key = self.keys.get_api_key(name, env_var=policy.env_key, gopass_key=policy.gopass_key) or ""
        if not api_key:
            logger.debug(f"No API key resolved for provider {name}")
        return ProviderIdentity(name=name, endpoint=endpoint, model=model, api_key=api_key)

    def _lookup(self, env_key: str, pref_key: str, default: str) -> str:
        if env_key:
            val = self.environ.get(env_key, "")
            if val:
                return val
        if self.settings is not None:
            val = self.settings.get_pref(pref_key)
            if val:
                return val
        return default

    # -------------------- provider mutations --------------------

    def add_provider(
        self,
        name: str,
        endpoint: str,
        model: str,
        priority: int = 1,
        api_key: str = "",
        max_retries: int = 2,
        description: str = "Custom BYOK provider",
    ) -> ProviderIdentity:
        """Add or replace a provider. Endpoint, model and key are stored in settings."""
        name = (name or "").strip().lower()
        if not name:
            raise ProviderConfigError("Provider name is required")
        if max_retries < 0:
            raise ProviderConfigError("max_retries must be >= 0")
        upper = name.upper()
        policy = ProviderPolicy(
            priority=priority,
            enabled=True,
            max_retries=max_retries,
            gopass_key=f"terminal-ai/{name}_api_key",
            env_key=f"{upper}_API_KEY",
            endpoint_key=f"{upper}_ENDPOINT",
            model_key=f"{upper}_MODEL",
            byok=True,
            description=description,
        )
        with self._lock:
            if self.settings is not None:
                self.settings.set_pref(endpoint_pref_key(name), endpoint or None)
                self.settings.set_pref(model_pref_key(name), model or None)
                if api_key:
                    self.settings.set_api_key(name, api_key)
            self._config.providers[name] = policy
            self._persist()
            if self.settings is not None:
                ident = self._resolve(name, policy)
            else:
                ident = ProviderIdentity(name=name, endpoint=endpoint, model=model, api_key=api_key)
            self._identities[name] = ident
            return ident

    def set_api_key(self, name: str, api_key: Optional[str]) -> ProviderIdentity:
        with self._lock:
            policy = self._policy(name)
            if self.settings is None:
                raise ProviderConfigError("No settings store configured for API keys")
            self.settings.set_api_key(name, api_key)
            self._identities[name] = self._resolve(name, policy)
            return self._identities[name]

    def set_enabled(self, name: str, enabled: bool) -> None:
        with self._lock:
            self._policy(name).enabled = enabled
            self._persist()

    def set_priority(self, name: str, priority: int) -> None:
        with self._lock:
            self._policy(name).priority = int(priority)
            self._persist()

    def set_default(self, name: str) -> None:
        with self._lock:
            self._policy(name)
            self._config.default_provider = name
            self._persist()

    def set_fallback_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._config.fallback_enabled = enabled
            self._persist()

    # -------------------- BYOK mutations (aggregator only) --------------------

    def byok_set_enabled(self, enabled: bool) -> BYOKPolicy:
        with self._lock:
            policy = self._policy(AGGREGATOR_PROVIDER)
            if policy.byok_config is None:
                policy.byok_config = BYOKPolicy(enabled=enabled)
            else:
                policy.byok_config.enabled = enabled
            self._persist()
            return copy.deepcopy(policy.byok_config)

    def byok_add(self, upstream: str, model: str) -> None:
        upstream = upstream.strip()
        with self._lock:
            cfg = self._byok("BYOK not initialized. Enable BYOK first")
            if upstream in cfg.provider_order:
                raise ProviderConfigError(f"BYOK provider '{upstream}' already exists")
            cfg.provider_order.append(upstream)
            cfg.models[normalize_provider_key(upstream)] = model
            self._persist()

    def byok_remove(self, upstream: str) -> None:
        with self._lock:
            cfg = self._byok("BYOK not configured")
            if upstream not in cfg.provider_order:
                raise ProviderConfigError(f"BYOK provider '{upstream}' not found")
            cfg.provider_order = [p for p in cfg.provider_order if p != upstream]
            cfg.models.pop(normalize_provider_key(upstream), None)
            self._persist()

    def byok_set_order(self, order: Sequence[str]) -> List[str]:
        new_order = [p.strip() for p in order if p.strip()]
        with self._lock:
            cfg = self._byok("BYOK not configured. Enable BYOK first")
            for name in new_order:
                if name not in cfg.provider_order:
                    raise ProviderConfigError(f"BYOK provider '{name}' not found. Add it first")
            cfg.provider_order = new_order
            self._persist()
            return list(new_order)

    def byok_set_model(self, upstream: str, model: str) -> None:
        with self._lock:
            cfg = self._byok("BYOK not configured")
            if upstream not in cfg.provider_order:
                raise ProviderConfigError(f"BYOK provider '{upstream}' not found. Add it first")
            cfg.models[normalize_provider_key(upstream)] = model
            self._persist()

    def byok_set_fallback(self, allow: bool) -> None:
        with self._lock:
            cfg = self._byok("BYOK not configured")
            cfg.allow_fallback_to_shared = allow
            self._persist()

    # -------------------- internal helpers --------------------

    def _policy(self, name: str) -> ProviderPolicy:
        policy = self._config.providers.get(name)
        if policy is None:
            raise UnknownProviderError(f"Provider '{name}' not found")
        return policy

    def _byok(self, missing_message: str) -> BYOKPolicy:
        policy = self._policy(AGGREGATOR_PROVIDER)
        if policy.byok_config is None:
            raise ProviderConfigError(missing_message)
        return policy.byok_config

    def _persist(self) -> None:
        if self.config_repo is not None:
            self.config_repo.save(self._config)
