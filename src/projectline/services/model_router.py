"""Routing helpers for selecting the chat model provider.

The router does not couple directly to concrete SDK clients; it resolves a
provider configuration (name, model, key, endpoint) that
``services.chat_providers`` turns into an actual call. A user's own AI
settings always win; environment keys are the fallback for deployments
that provide a shared key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..domain.chat_models import AISettings, ChatModelOption


PROVIDER_NOT_CONFIGURED = "AI provider not configured. Please configure AI settings first."
API_KEY_NOT_CONFIGURED = "AI API key not configured. Please add your API key in settings."


class ProviderConfigError(RuntimeError):
    """No usable provider could be resolved for the caller."""


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle a chat turn."""

    name: str
    model: str
    transport: str
    base_url: str
    api_key: str = field(default="", repr=False)
    source: str = "settings"


class ModelRouter:
    """Resolve the chat provider for a user."""

    PROVIDER_CONFIG: Dict[str, Dict[str, str]] = {
        "openai": {
            "label": "OpenAI (GPT-4)",
            "transport": "openai",
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
        },
        "anthropic": {
            "label": "Anthropic (Claude)",
            "transport": "anthropic",
            "api_key_env": "ANTHROPIC_API_KEY",
            "base_url_env": "ANTHROPIC_BASE_URL",
            "model_env": "ANTHROPIC_MODEL",
            "default_model": "claude-3-5-haiku-20241022",
            "default_base_url": "https://api.anthropic.com/v1",
        },
        "google": {
            "label": "Google (Gemini)",
            "transport": "google",
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.5-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta",
        },
        "groq": {
            "label": "Groq (Fast Inference)",
            "transport": "openai",
            "api_key_env": "GROQ_API_KEY",
            "base_url_env": "GROQ_BASE_URL",
            "model_env": "GROQ_MODEL",
            "default_model": "llama-3.3-70b-versatile",
            "default_base_url": "https://api.groq.com/openai/v1",
        },
        "mistral": {
            "label": "Mistral AI",
            "transport": "openai",
            "api_key_env": "MISTRAL_API_KEY",
            "base_url_env": "MISTRAL_BASE_URL",
            "model_env": "MISTRAL_MODEL",
            "default_model": "mistral-small-latest",
            "default_base_url": "https://api.mistral.ai/v1",
        },
        "xai": {
            "label": "xAI (Grok)",
            "transport": "openai",
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "deepseek": {
            "label": "DeepSeek",
            "transport": "openai",
            "api_key_env": "DEEPSEEK_API_KEY",
            "base_url_env": "DEEPSEEK_BASE_URL",
            "model_env": "DEEPSEEK_MODEL",
            "default_model": "deepseek-chat",
            "default_base_url": "https://api.deepseek.com",
        },
        "openrouter": {
            "label": "OpenRouter (100+ Models)",
            "transport": "openai",
            "api_key_env": "OPENROUTER_API_KEY",
            "base_url_env": "OPENROUTER_BASE_URL",
            "model_env": "OPENROUTER_MODEL",
            "default_model": "openrouter/auto",
            "default_base_url": "https://openrouter.ai/api/v1",
        },
    }

    MODEL_CATALOG: Dict[str, tuple[tuple[str, str], ...]] = {
        "openai": (("gpt-4o", "GPT-4o"), ("gpt-4o-mini", "GPT-4o Mini"), ("gpt-4-turbo", "GPT-4 Turbo"), ("o3-mini", "o3 Mini")),
        "anthropic": (
            ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet"),
            ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku"),
            ("claude-3-opus-20240229", "Claude 3 Opus"),
        ),
        "google": (("gemini-2.5-flash", "Gemini 2.5 Flash"), ("gemini-1.5-pro", "Gemini 1.5 Pro"), ("gemini-1.5-flash", "Gemini 1.5 Flash")),
        "groq": (("llama-3.3-70b-versatile", "Llama 3.3 70B"), ("llama-3.1-8b-instant", "Llama 3.1 8B Instant"), ("gemma2-9b-it", "Gemma 2 9B")),
        "mistral": (("mistral-large-latest", "Mistral Large"), ("mistral-small-latest", "Mistral Small"), ("codestral-latest", "Codestral")),
        "xai": (("grok-2-latest", "Grok 2"), ("grok-beta", "Grok Beta")),
        "deepseek": (("deepseek-chat", "DeepSeek Chat"), ("deepseek-reasoner", "DeepSeek Reasoner")),
        "openrouter": (("openrouter/auto", "Auto (Best for prompt)"), ("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet"), ("openai/gpt-4o", "GPT-4o")),
    }

    # Order used when falling back to deployment-wide keys.
    ROUTING_ORDER: tuple[str, ...] = ("openai", "anthropic", "google", "groq", "mistral", "xai", "deepseek", "openrouter")

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("PROJECTLINE_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred if preferred in self.PROVIDER_CONFIG else None

    @classmethod
    def is_supported(cls, provider: Optional[str]) -> bool:
        return bool(provider) and provider in cls.PROVIDER_CONFIG

    @classmethod
    def default_model(cls, provider: str) -> str:
        cfg = cls.PROVIDER_CONFIG.get(provider) or cls.PROVIDER_CONFIG["openai"]
        return cfg["default_model"]

    # ------------------------------------------------------------------
    # Provider resolution helpers
    # ------------------------------------------------------------------
    def _env_key(self, provider: str) -> str:
        if self._allowed is not None and provider not in self._allowed:
            return ""
        return (self._env.get(self.PROVIDER_CONFIG[provider]["api_key_env"]) or "").strip()

    def _resolve_selection(self, provider: str, api_key: str, model: Optional[str], source: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        return ProviderSelection(
            name=provider,
            model=model or self._env.get(cfg["model_env"]) or cfg["default_model"],
            transport=cfg["transport"],
            base_url=(self._env.get(cfg["base_url_env"]) or cfg["default_base_url"]).rstrip("/"),
            api_key=api_key,
            source=source,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def select_provider(self, settings: Optional[AISettings] = None) -> ProviderSelection:
        """Return the provider for a chat turn.

        Raises
        ------
        ProviderConfigError
            With a user-facing message when nothing usable is configured.
        """

        if settings is not None and settings.ai_provider:
            provider = settings.ai_provider
            if not self.is_supported(provider):
                raise ProviderConfigError(f"Unsupported AI provider: {provider}")
            api_key = (settings.ai_api_key or "").strip()
            if not api_key:
                raise ProviderConfigError(API_KEY_NOT_CONFIGURED)
            return self._resolve_selection(provider, api_key, settings.ai_model_preference, "settings")

        priority: List[str] = list(self.ROUTING_ORDER)
        if self._preferred_provider:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            key = self._env_key(provider)
            if key:
                return self._resolve_selection(provider, key, None, "environment")
        raise ProviderConfigError(PROVIDER_NOT_CONFIGURED)

    def maybe_select_provider(self, settings: Optional[AISettings] = None) -> Optional[ProviderSelection]:
        """Like :meth:`select_provider` but returns ``None`` on failure."""

        try:
            return self.select_provider(settings)
        except ProviderConfigError:
            return None

    def list_models(self, settings: Optional[AISettings] = None) -> List[ChatModelOption]:
        """Model catalogue with availability for the given user."""

        user_provider = settings.ai_provider if settings and settings.ai_api_key else None
        options: List[ChatModelOption] = []
        for provider, models in self.MODEL_CATALOG.items():
            available = provider == user_provider or bool(self._env_key(provider))
            for model, label in models:
                options.append(
                    ChatModelOption(
                        provider=provider,
                        model=model,
                        label=label,
                        description=self.PROVIDER_CONFIG[provider]["label"],
                        available=available,
                    )
                )
        return options
