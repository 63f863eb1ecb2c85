"""registry.provider_registry

Registry that maps provider slugs (e.g. "openai") to adapter *instances*
(subclasses of AbstractProviderAdapter).

The registry is a pure domain helper (no external SDK imports) so that it
can be imported freely by adapters without risk of circular imports. It is
built once and never mutated afterwards, which makes concurrent lookups safe
without locking; `extended` returns a new registry instead.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from llm_unify.core.abc import AbstractProviderAdapter
from llm_unify.core.exceptions import ProviderNotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from llm_unify.core.types import Capabilities


class AdapterRegistry:
    """Read-only look-up for provider → adapter mappings.

    ```python
    registry = AdapterRegistry({'openai': OpenAIAdapter(), 'ollama': OllamaAdapter()})
    registry.get('OpenAI').capabilities()
    ```
    """

    def __init__(self, adapters: Mapping[str, AbstractProviderAdapter] | None = None) -> None:
        entries: dict[str, AbstractProviderAdapter] = {}
        for provider_key, adapter in (adapters or {}).items():
            if not isinstance(adapter, AbstractProviderAdapter):
                raise TypeError(f'adapter for {provider_key!r} must be an AbstractProviderAdapter instance')
            entries[provider_key.lower()] = adapter
        self._registry: Mapping[str, AbstractProviderAdapter] = MappingProxyType(entries)

    def get(self, provider_key: str) -> AbstractProviderAdapter:
        """Return the adapter registered for *provider_key* (case-insensitive).

        Raises
        ------
        ProviderNotFoundError
            If *provider_key* hasn't been registered.

        """
        try:
            return self._registry[provider_key.lower()]
        except KeyError as exc:
            available = ', '.join(self.available_providers()) or 'none'
            raise ProviderNotFoundError(
                f'Unsupported provider: {provider_key} (available: {available})',
                provider=provider_key,
            ) from exc

    def capabilities(self, provider_key: str) -> Capabilities:
        return self.get(provider_key).capabilities()

    def available_providers(self) -> list[str]:
        """Return a sorted list of registered providers (for introspection)."""
        return sorted(self._registry)

    def mapping(self) -> Mapping[str, AbstractProviderAdapter]:
        """Return a read-only view of the provider mapping."""
        return self._registry

    def extended(self, provider_key: str, adapter: AbstractProviderAdapter) -> AdapterRegistry:
        """Return a new registry with *adapter* added (or replacing an entry)."""
        return AdapterRegistry({**self._registry, provider_key: adapter})

    def __contains__(self, provider_key: object) -> bool:
        return isinstance(provider_key, str) and provider_key.lower() in self._registry

    def __len__(self) -> int:
        return len(self._registry)
