"""Adapter factories keyed by provider id."""

from __future__ import annotations

from collections.abc import Callable

from google import genai

from complaint_agent.config import GenerationConfig, ProviderSettings, TierConfig
from complaint_agent.providers.base import ProviderAdapter
from complaint_agent.providers.clients import CredentialClientCache
from complaint_agent.providers.gemini import GeminiAdapter, new_gemini_client
from complaint_agent.providers.openrouter import ChatModelFactory, OpenRouterAdapter, chat_model_factory
from complaint_agent.types import ProviderId

AdapterFactory = Callable[[TierConfig], ProviderAdapter]


class ProviderRegistry:
    """Builds a fresh adapter for a tier on every call."""

    def __init__(self) -> None:
        self._factories: dict[ProviderId, AdapterFactory] = {}

    def register(self, provider_id: ProviderId, factory: AdapterFactory) -> None:
        if provider_id in self._factories:
            raise ValueError(f"Provider already registered: {provider_id.value}")
        self._factories[provider_id] = factory

    def create(self, tier: TierConfig) -> ProviderAdapter:
        factory = self._factories.get(tier.provider_id)
        if factory is None:
            raise KeyError(f"Unknown provider: {tier.provider_id.value}")
        return factory(tier)

    def providers(self) -> list[ProviderId]:
        return list(self._factories)


def build_default_registry(
    settings: ProviderSettings,
    generation: GenerationConfig | None = None,
    *,
    gemini_clients: CredentialClientCache[genai.Client] | None = None,
    openrouter_models: ChatModelFactory | None = None,
) -> ProviderRegistry:
    """Registry wired to the real Gemini and OpenRouter adapters.

    Missing credentials are not checked here: the adapter constructor raises,
    so the fallback controller can escalate past an unconfigured tier.
    """
    generation = generation or GenerationConfig()
    clients = gemini_clients or CredentialClientCache(new_gemini_client)
    models = openrouter_models or chat_model_factory(settings)

    registry = ProviderRegistry()
    registry.register(
        ProviderId.GEMINI,
        lambda tier: GeminiAdapter(tier, generation, api_key=settings.gemini_api_key, client_cache=clients),
    )
    registry.register(
        ProviderId.OPENROUTER,
        lambda tier: OpenRouterAdapter(tier, generation, api_key=settings.openrouter_api_key, model_factory=models),
    )
    return registry
