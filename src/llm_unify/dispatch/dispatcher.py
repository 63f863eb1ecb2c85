"""dispatch.dispatcher

The single entry point of *llm_unify*::

    complete(provider, model, request, config) -> CompletionResponse | CompletionStream

The return type is selected solely by ``request.stream``. The dispatcher
validates the request against the adapter's capabilities, runs the adapter
pipeline and makes sure nothing but an `LLMUnifyError` escapes. It never
retries; see `llm_unify.policies` for that.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from llm_unify.core.channel import DEFAULT_CAPACITY
from llm_unify.core.exceptions import (
    InvalidRequestError,
    LLMUnifyError,
    UnsupportedFeatureError,
    classify_exception,
)
from llm_unify.core.model_id import ModelId
from llm_unify.core.types import CompletionRequest, CompletionResponse
from llm_unify.dispatch.streaming import CompletionStream, open_stream

if TYPE_CHECKING:
    from collections.abc import Mapping

    from llm_unify.core.abc import AbstractProviderAdapter
    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import ProviderConfig
    from llm_unify.registry.provider_registry import AdapterRegistry

logger = logging.getLogger(__name__)

CompletionResult = CompletionResponse | CompletionStream
RequestLike = CompletionRequest | dict[str, Any]


class CompletionCall(Protocol):
    """Signature shared by the dispatcher and every policy wrapper."""

    def __call__(
        self,
        provider: str,
        model: str,
        request: RequestLike,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult: ...


def coerce_request(request: RequestLike, model: str | None = None) -> CompletionRequest:
    """Validate *request* and pin its ``model`` field to *model*.

    Raises
    ------
    InvalidRequestError
        If a plain mapping does not describe a valid request.

    """
    try:
        if not isinstance(request, CompletionRequest):
            request = CompletionRequest.model_validate(request)
    except ValidationError as exc:
        raise InvalidRequestError(f'Invalid completion request: {exc}') from exc
    if model and request.model != model:
        request = request.model_copy(update={'model': model})
    return request


def validate_capabilities(adapter: AbstractProviderAdapter, request: CompletionRequest) -> None:
    caps = adapter.capabilities()
    provider = adapter.provider_name
    if request.stream and not caps.streaming:
        raise UnsupportedFeatureError(f'provider {provider!r} does not support streaming', provider=provider)
    if request.tools and not caps.tool_calling:
        raise UnsupportedFeatureError(f'provider {provider!r} does not support tool calling', provider=provider)


class CompletionDispatcher:
    """Route completion calls to adapters held in an `AdapterRegistry`."""

    def __init__(self, registry: AdapterRegistry, *, stream_buffer_size: int = DEFAULT_CAPACITY) -> None:
        self._registry = registry
        self._stream_buffer_size = stream_buffer_size

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    def complete(
        self,
        provider: str,
        model: str,
        request: RequestLike,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        """Run one completion against *provider*.

        Blocking requests return a `CompletionResponse`; streaming requests
        return a `CompletionStream` as soon as the background task started.

        Raises
        ------
        LLMUnifyError
            For every failure on the blocking path, and for setup failures
            (unknown provider, invalid request, unsupported feature) on the
            streaming path. Later streaming failures arrive as a terminal chunk.

        """
        adapter = self._registry.get(provider)
        req = coerce_request(request, model)
        validate_capabilities(adapter, req)
        if cancel is not None:
            cancel.raise_if_cancelled()

        logger.debug('dispatch %s/%s stream=%s', adapter.provider_name, req.model, req.stream)
        try:
            wire_request = adapter.transform(req)
            if req.stream:
                return open_stream(
                    adapter,
                    wire_request,
                    config,
                    model=req.model,
                    capacity=self._stream_buffer_size,
                    cancel=cancel,
                )
            wire_response = adapter.execute(wire_request, config)
            if cancel is not None:
                cancel.raise_if_cancelled()
            return adapter.normalize(wire_response)
        except LLMUnifyError:
            raise
        except Exception as exc:
            raise classify_exception(exc, adapter.provider_name) from exc

    __call__ = complete

    def complete_model(
        self,
        model_id: str,
        request: RequestLike,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        """Like `complete`, with a ``"provider/model"`` identifier."""
        try:
            parsed = ModelId.parse(model_id)
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from exc
        return self.complete(parsed.provider, parsed.model, request, config, cancel=cancel)


def complete(
    registry: AdapterRegistry | Mapping[str, AbstractProviderAdapter],
    provider: str,
    model: str,
    request: RequestLike,
    config: ProviderConfig | None = None,
    *,
    cancel: CancellationToken | None = None,
) -> CompletionResult:
    """One-shot dispatch without keeping a `CompletionDispatcher` around."""
    from llm_unify.registry.provider_registry import AdapterRegistry

    if not isinstance(registry, AdapterRegistry):
        registry = AdapterRegistry(registry)
    return CompletionDispatcher(registry).complete(provider, model, request, config, cancel=cancel)
