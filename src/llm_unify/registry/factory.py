"""registry.factory

Factory responsible for turning process `Settings` into initialized adapter
instances and a ready-to-use `AdapterRegistry`.

Only the built-in adapters are known here; applications with their own
adapters build an `AdapterRegistry` directly (or `extended` the default one).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from llm_unify.adapters.ollama_adapter import OllamaAdapter
from llm_unify.adapters.openai_adapter import OpenAIAdapter
from llm_unify.core.exceptions import ProviderNotFoundError
from llm_unify.core.settings import load_settings
from llm_unify.registry.provider_registry import AdapterRegistry

if TYPE_CHECKING:
    from llm_unify.core.abc import AbstractProviderAdapter
    from llm_unify.core.settings import Settings

logger = logging.getLogger(__name__)

ADAPTER_TYPES: dict[str, type[AbstractProviderAdapter]] = {
    OpenAIAdapter.provider_name: OpenAIAdapter,
    OllamaAdapter.provider_name: OllamaAdapter,
}


def create_adapter(provider: str, settings: Settings) -> AbstractProviderAdapter:
    """Return a concrete adapter for *provider* configured from *settings*.

    Raises
    ------
    ProviderNotFoundError
        If *provider* is not a built-in adapter.

    """
    key = provider.lower()
    if key == OpenAIAdapter.provider_name:
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        return OpenAIAdapter(
            api_key=api_key,
            api_base=settings.openai_api_base,
            timeout_seconds=settings.request_timeout_seconds,
        )
    if key == OllamaAdapter.provider_name:
        return OllamaAdapter(api_base=settings.ollama_api_base, timeout_seconds=settings.request_timeout_seconds)
    available = ', '.join(sorted(ADAPTER_TYPES))
    raise ProviderNotFoundError(f'Unsupported provider: {provider} (available: {available})', provider=provider)


def build_default_registry(settings: Settings | None = None) -> AdapterRegistry:
    """Registry holding every built-in adapter, configured from the environment."""
    settings = settings or load_settings()
    adapters = {name: create_adapter(name, settings) for name in ADAPTER_TYPES}
    logger.debug('default registry built with providers %s', sorted(adapters))
    return AdapterRegistry(adapters)
