"""registry.config_registry

Named configurations: a short name (``"fast"``, ``"smart"``) resolving to the
``(provider, model, config)`` triple the dispatcher needs.

A configuration is either static (``provider`` + ``model`` + ``config``) or
routed: a ``router`` callable inspects each request and picks the provider
and model, with per-provider credentials taken from ``configs``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from llm_unify.core.exceptions import InvalidConfigError
from llm_unify.core.types import CompletionRequest, CompletionTarget, ProviderConfig

logger = logging.getLogger(__name__)

RouterFn = Callable[[CompletionRequest], tuple[str, str]]


class NamedConfig(BaseModel):
    """One registered configuration."""

    provider: str | None = None
    model: str | None = None
    config: ProviderConfig | None = None
    router: RouterFn | None = None
    configs: dict[str, ProviderConfig] | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def _check_shape(self) -> NamedConfig:
        if not self.provider and self.router is None:
            raise ValueError('config must have a provider or a router')
        if self.provider and not self.model:
            raise ValueError('config with a provider must have a model')
        return self

    def resolve(self, request: CompletionRequest) -> CompletionTarget:
        if self.router is None:
            return CompletionTarget(provider=self.provider, model=self.model, config=self.config)
        provider, model = self.router(request)
        config = self.configs.get(provider) if self.configs is not None else self.config
        return CompletionTarget(provider=provider, model=model, config=config)


class ConfigRegistry:
    """Immutable mapping of configuration name → `NamedConfig`."""

    def __init__(self, configs: Mapping[str, NamedConfig | Mapping[str, object]] | None = None) -> None:
        entries: dict[str, NamedConfig] = {}
        for name, raw in (configs or {}).items():
            try:
                entries[name] = raw if isinstance(raw, NamedConfig) else NamedConfig.model_validate(raw)
            except ValidationError as exc:
                raise InvalidConfigError(f'Invalid configuration {name!r}: {exc}') from exc
            logger.debug('registered configuration %s', name)
        self._configs: Mapping[str, NamedConfig] = MappingProxyType(entries)

    def get(self, name: str) -> NamedConfig:
        """Return the configuration registered as *name*.

        Raises
        ------
        InvalidConfigError
            If *name* is unknown.

        """
        try:
            return self._configs[name]
        except KeyError as exc:
            available = ', '.join(self.names()) or 'none'
            raise InvalidConfigError(f'Configuration not found: {name} (available: {available})') from exc

    def resolve(self, name: str, request: CompletionRequest) -> CompletionTarget:
        """Resolve *name* for *request*, running its router if it has one."""
        named = self.get(name)
        try:
            return named.resolve(request)
        except ValidationError as exc:
            raise InvalidConfigError(f'Configuration {name!r} resolved to an invalid target: {exc}') from exc
        except (TypeError, ValueError) as exc:
            raise InvalidConfigError(f'Router of configuration {name!r} failed: {exc}') from exc

    def names(self) -> list[str]:
        return sorted(self._configs)

    def __contains__(self, name: object) -> bool:
        return name in self._configs
