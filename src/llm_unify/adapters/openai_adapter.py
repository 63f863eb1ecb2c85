"""adapters.openai_adapter

Concrete adapter that bridges :class:`llm_unify.core.abc.AbstractProviderAdapter`
with the **OpenAI Chat Completions** HTTP API.

This implementation targets *openai==1.x* (the "unified" client). The SDK's
own retry loop is disabled (``max_retries=0``): retrying is the job of
`llm_unify.policies.retry`, and a hidden second retry layer would multiply
attempts.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
import openai
from pydantic import ValidationError

from llm_unify.core.abc import AbstractProviderAdapter
from llm_unify.core.exceptions import (
    GenerationTimeoutError,
    InvalidConfigError,
    InvalidResponseError,
    LLMUnifyError,
    ProviderConnectionError,
    ProviderError,
    ServerError,
    error_from_status,
    parse_retry_after,
)
from llm_unify.core.types import (
    Capabilities,
    Choice,
    CompletionResponse,
    FinishReason,
    Message,
    PartialToolCall,
    Role,
    StreamChunk,
    ToolCall,
    Usage,
)
from llm_unify.core.wire import WireFormat

if TYPE_CHECKING:
    from collections.abc import Iterator

    from llm_unify.core.abc import WireRequest, WireResponse
    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import CompletionRequest, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = 'https://api.openai.com/v1'
# Error codes that mark a 429 as hard quota exhaustion rather than throttling
_QUOTA_CODES = frozenset({'insufficient_quota', 'billing_hard_limit_reached'})

# ---------------------------------------------------------------------------
# Adapter implementation
# ---------------------------------------------------------------------------


class OpenAIAdapter(AbstractProviderAdapter):
    """Adapter for the OpenAI Chat Completions API."""

    provider_name = 'openai'
    wire_format = WireFormat.SSE

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout_seconds: float = 30.0,
        client: openai.OpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base = api_base or DEFAULT_API_BASE
        self._timeout = timeout_seconds
        self._client = client
        if self._client is None and api_key:
            self._client = self._build_client(api_key, self._api_base, self._timeout)

    def capabilities(self) -> Capabilities:
        return Capabilities(streaming=True, tool_calling=True, embeddings=False)

    # ------------------------------------------------------------------
    # Request mapping
    # ------------------------------------------------------------------

    def transform(self, request: CompletionRequest) -> WireRequest:
        wire: dict[str, Any] = {
            'model': request.model,
            'messages': [_message_to_wire(m) for m in request.messages],
            'stream': request.stream,
        }
        if request.temperature is not None:
            wire['temperature'] = request.temperature
        if request.top_p is not None:
            wire['top_p'] = request.top_p
        if request.max_tokens is not None:
            wire['max_tokens'] = request.max_tokens
        if request.stop:
            wire['stop'] = list(request.stop)
        if request.tools:
            wire['tools'] = [
                {
                    'type': 'function',
                    'function': {
                        'name': t.name,
                        'description': t.description or '',
                        'parameters': t.parameters,
                    },
                }
                for t in request.tools
            ]
        if request.tool_choice is not None:
            wire['tool_choice'] = request.tool_choice
        if request.stream:
            # Final chunk then carries the token counts
            wire['stream_options'] = {'include_usage': True}
        if extra := request.extra_params:
            wire['extra_body'] = extra
        return wire

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def execute(self, wire_request: WireRequest, config: ProviderConfig | None = None) -> WireResponse:
        client = self._client_for(config)
        try:
            raw = client.chat.completions.with_raw_response.create(**wire_request)
            body = raw.http_response.json()
        except openai.APIError as exc:
            raise _translate_error(exc) from exc
        except ValueError as exc:
            raise InvalidResponseError(f'OpenAI returned a non-JSON body: {exc}', provider=self.provider_name) from exc
        if not isinstance(body, dict):
            raise InvalidResponseError('OpenAI returned a non-object body', provider=self.provider_name)
        return body

    def execute_streaming(
        self,
        wire_request: WireRequest,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Iterator[bytes]:
        client = self._client_for(config)
        try:
            with client.chat.completions.with_streaming_response.create(**wire_request) as response:
                unregister = cancel.on_cancel(response.close) if cancel is not None else None
                try:
                    yield from response.iter_bytes()
                finally:
                    if unregister is not None:
                        unregister()
        except openai.APIError as exc:
            raise _translate_error(exc) from exc
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(f'OpenAI stream timed out: {exc}', provider=self.provider_name) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(f'OpenAI stream broke: {exc}', provider=self.provider_name) from exc

    # ------------------------------------------------------------------
    # Response mapping
    # ------------------------------------------------------------------

    def normalize(self, wire_response: WireResponse) -> CompletionResponse:
        try:
            choices = tuple(_choice_from_wire(c) for c in wire_response['choices'])
            return CompletionResponse(
                id=wire_response.get('id') or '',
                created=wire_response.get('created') or 0,
                model=wire_response.get('model') or '',
                choices=choices,
                usage=_usage_from_wire(wire_response.get('usage')),
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise InvalidResponseError(f'Unexpected OpenAI response shape: {exc}', provider=self.provider_name) from exc

    def normalize_chunk(self, unit: dict[str, Any]) -> StreamChunk | None:
        if 'error' in unit:
            raise _in_band_error(unit['error'])
        usage = _usage_from_wire(unit.get('usage'))
        choices = unit.get('choices') or []
        if not choices:
            if usage is None:
                return None
            return StreamChunk(usage=usage, id=unit.get('id'), model=unit.get('model'))

        choice = choices[0]
        delta = choice.get('delta') or {}
        tool_deltas = tuple(
            PartialToolCall(
                index=tc.get('index', 0),
                id=tc.get('id'),
                name=(tc.get('function') or {}).get('name'),
                arguments_delta=(tc.get('function') or {}).get('arguments'),
            )
            for tc in delta.get('tool_calls') or ()
        )
        content = delta.get('content') or None
        finish = FinishReason.parse(choice.get('finish_reason'))
        if content is None and not tool_deltas and finish is None and usage is None:
            return None  # role-only opening delta
        return StreamChunk(
            choice_index=choice.get('index', 0),
            delta_content=content,
            delta_tool_calls=tool_deltas or None,
            finish_reason=finish,
            usage=usage,
            id=unit.get('id'),
            model=unit.get('model'),
        )

    # ------------------------------------------------------------------
    # Client handling
    # ------------------------------------------------------------------

    def _client_for(self, config: ProviderConfig | None) -> openai.OpenAI:
        overrides: dict[str, Any] = {}
        if config is not None:
            if (key := config.api_key_value()) is not None:
                overrides['api_key'] = key
            if config.api_base:
                overrides['base_url'] = config.api_base
            if config.timeout_seconds is not None:
                overrides['timeout'] = config.timeout_seconds
        if self._client is not None:
            return self._client.with_options(**overrides) if overrides else self._client
        api_key = overrides.get('api_key') or self._api_key
        if not api_key:
            raise InvalidConfigError('OpenAI API key is not configured', provider=self.provider_name)
        return self._build_client(
            api_key,
            overrides.get('base_url', self._api_base),
            overrides.get('timeout', self._timeout),
        )

    @staticmethod
    def _build_client(api_key: str, base_url: str, timeout: float) -> openai.OpenAI:
        return openai.OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _message_to_wire(message: Message) -> dict[str, Any]:
    wire: dict[str, Any] = {'role': message.role.value, 'content': message.content}
    if message.name:
        wire['name'] = message.name
    if message.tool_call_id:
        wire['tool_call_id'] = message.tool_call_id
    if message.tool_calls:
        wire['tool_calls'] = [
            {'id': c.id, 'type': 'function', 'function': {'name': c.name, 'arguments': c.arguments_json}}
            for c in message.tool_calls
        ]
    return wire


def _choice_from_wire(choice: dict[str, Any]) -> Choice:
    msg = choice.get('message') or {}
    tool_calls = tuple(
        ToolCall(id=c['id'], name=c['function']['name'], arguments_json=c['function'].get('arguments') or '{}')
        for c in msg.get('tool_calls') or ()
    )
    message = Message(
        role=Role(msg.get('role') or 'assistant'),
        content=msg.get('content') or '',
        tool_calls=tool_calls or None,
    )
    return Choice(
        index=choice.get('index', 0),
        message=message,
        finish_reason=FinishReason.parse(choice.get('finish_reason')),
    )


def _usage_from_wire(usage: dict[str, Any] | None) -> Usage | None:
    if not usage:
        return None
    return Usage(
        prompt_tokens=usage.get('prompt_tokens'),
        completion_tokens=usage.get('completion_tokens'),
        total_tokens=usage.get('total_tokens'),
    )


def _translate_error(exc: openai.APIError) -> LLMUnifyError:
    provider = OpenAIAdapter.provider_name
    if isinstance(exc, openai.APITimeoutError):
        return GenerationTimeoutError(f'OpenAI request timed out: {exc.message}', provider=provider)
    if isinstance(exc, openai.APIConnectionError):
        return ProviderConnectionError(f'Cannot reach OpenAI: {exc.message}', provider=provider)
    if isinstance(exc, openai.APIStatusError):
        code = str(exc.code) if exc.code is not None else None
        return error_from_status(
            exc.status_code,
            provider=provider,
            message=exc.message,
            provider_code=code,
            retry_after_seconds=parse_retry_after(exc.response.headers.get('retry-after')),
            request_id=exc.request_id,
            quota_exceeded=code in _QUOTA_CODES,
        )
    logger.debug('unclassified OpenAI error %r', exc)
    return ProviderError(exc.message, provider=provider, retryable=False)


def _in_band_error(error: Any) -> LLMUnifyError:
    """Error object sent inside the event stream after a 200 response."""
    provider = OpenAIAdapter.provider_name
    if not isinstance(error, dict):
        return ProviderError(str(error), provider=provider)
    message = error.get('message') or 'OpenAI stream error'
    code = str(error['code']) if error.get('code') is not None else None
    if error.get('type') == 'server_error':
        return ServerError(message, provider=provider, provider_code=code)
    return ProviderError(message, provider=provider, provider_code=code)
