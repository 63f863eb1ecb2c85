"""dispatch.router

Completion by configuration name instead of ``(provider, model, config)``.

`Router` resolves names through a `ConfigRegistry` and dispatches through a
`CompletionCall`, by default the plain dispatcher; pass a composed call to
put policies (timeout, retry, cost tracking) under every routed request.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from llm_unify.core.exceptions import InvalidConfigError
from llm_unify.core.types import CompletionResponse, Message, Role
from llm_unify.dispatch.dispatcher import coerce_request
from llm_unify.policies.fallback import with_fallback

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.dispatch.dispatcher import (
        CompletionCall,
        CompletionDispatcher,
        CompletionResult,
        RequestLike,
    )
    from llm_unify.policies.fallback import FallbackAttempt
    from llm_unify.registry.config_registry import ConfigRegistry

logger = logging.getLogger(__name__)


class Router:
    def __init__(
        self,
        dispatcher: CompletionDispatcher,
        configs: ConfigRegistry,
        *,
        call: CompletionCall | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._configs = configs
        self._call: CompletionCall = call or dispatcher.complete

    @property
    def dispatcher(self) -> CompletionDispatcher:
        return self._dispatcher

    @property
    def configs(self) -> ConfigRegistry:
        return self._configs

    def complete(
        self,
        config_name: str,
        request: RequestLike,
        *,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        """Resolve *config_name* for *request* and dispatch it."""
        req = coerce_request(request)
        target = self._configs.resolve(config_name, req)
        logger.debug('config %s resolved to %s', config_name, target)
        return self._call(target.provider, target.model, req, target.config, cancel=cancel)

    def complete_with_fallback(
        self,
        config_names: Sequence[str],
        request: RequestLike,
        on_failure: Callable[[FallbackAttempt], None] | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> CompletionResult:
        """Try each named configuration in order; the first success wins.

        Raises
        ------
        FallbackExhaustedError
            If every configuration failed.

        """
        if not config_names:
            raise InvalidConfigError('at least one configuration name is required')
        req = coerce_request(request)
        first, *rest = (self._configs.resolve(name, req) for name in config_names)
        call = with_fallback(rest, on_failure)(self._call)
        return call(first.provider, first.model, req, first.config, cancel=cancel)

    def chat(self, config_name: str, text: str, system_prompt: str | None = None) -> str:
        """Send one user message (optionally behind a system prompt); return the reply text."""
        messages = [Message(role=Role.user, content=text)]
        if system_prompt:
            messages.insert(0, Message(role=Role.system, content=system_prompt))
        response = self.complete(config_name, {'messages': messages})
        if not isinstance(response, CompletionResponse):  # pragma: no cover - stream=False above
            raise TypeError('expected a blocking response')
        return response.content
