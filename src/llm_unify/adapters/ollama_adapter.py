"""adapters.ollama_adapter

Concrete adapter for a local **Ollama** daemon (``POST /api/chat``).

Talks plain HTTP through *httpx*; no SDK or API key is involved. Streaming
responses are newline-delimited JSON with no end sentinel: the final line
carries ``"done": true`` plus the token counts, then the connection closes.
Tool calling is not offered by this adapter.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from llm_unify.core.abc import AbstractProviderAdapter
from llm_unify.core.exceptions import (
    GenerationTimeoutError,
    InvalidRequestError,
    InvalidResponseError,
    LLMUnifyError,
    ProviderConnectionError,
    ProviderError,
    error_from_status,
    parse_retry_after,
)
from llm_unify.core.types import (
    Capabilities,
    Choice,
    CompletionResponse,
    FinishReason,
    Message,
    Role,
    StreamChunk,
    Usage,
)
from llm_unify.core.wire import WireFormat

if TYPE_CHECKING:
    from collections.abc import Iterator

    from llm_unify.core.abc import WireRequest, WireResponse
    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import CompletionRequest, ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = 'http://localhost:11434'
CHAT_PATH = '/api/chat'


class OllamaAdapter(AbstractProviderAdapter):
    """Adapter for the Ollama chat endpoint."""

    provider_name = 'ollama'
    wire_format = WireFormat.NDJSON

    def __init__(
        self,
        *,
        api_base: str | None = None,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_base = (api_base or DEFAULT_API_BASE).rstrip('/')
        self._timeout = timeout_seconds
        # Only a client built here is closed by `close`
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def capabilities(self) -> Capabilities:
        return Capabilities(streaming=True, tool_calling=False, embeddings=False)

    def close(self) -> None:
        """Release the connection pool of a client this adapter created."""
        if self._owns_client and not self._client.is_closed:
            self._client.close()

    def __enter__(self) -> OllamaAdapter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request mapping
    # ------------------------------------------------------------------

    def transform(self, request: CompletionRequest) -> WireRequest:
        if request.tools or request.tool_choice is not None:
            raise InvalidRequestError('Ollama adapter does not support tool calling', provider=self.provider_name)
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options['temperature'] = request.temperature
        if request.top_p is not None:
            options['top_p'] = request.top_p
        if request.max_tokens is not None:
            options['num_predict'] = request.max_tokens
        if request.stop:
            options['stop'] = list(request.stop)
        extra = request.extra_params
        options.update(extra.pop('options', None) or {})

        wire: dict[str, Any] = {
            'model': request.model,
            'messages': [{'role': m.role.value, 'content': m.content} for m in request.messages],
            'stream': request.stream,
        }
        if options:
            wire['options'] = options
        # Remaining extras (format, keep_alive, ...) are top-level Ollama fields
        wire.update(extra)
        return wire

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def execute(self, wire_request: WireRequest, config: ProviderConfig | None = None) -> WireResponse:
        url, timeout = self._endpoint(config)
        try:
            response = self._client.post(url, json=wire_request, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(f'Ollama request timed out: {exc}', provider=self.provider_name) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(f'Cannot reach Ollama at {url}: {exc}', provider=self.provider_name) from exc
        if response.status_code >= 400:  # noqa: PLR2004
            raise self._status_error(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise InvalidResponseError(f'Ollama returned a non-JSON body: {exc}', provider=self.provider_name) from exc
        if not isinstance(body, dict):
            raise InvalidResponseError('Ollama returned a non-object body', provider=self.provider_name)
        if 'error' in body:
            raise ProviderError(str(body['error']), provider=self.provider_name)
        return body

    def execute_streaming(
        self,
        wire_request: WireRequest,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Iterator[bytes]:
        url, timeout = self._endpoint(config)
        try:
            with self._client.stream('POST', url, json=wire_request, timeout=timeout) as response:
                if response.status_code >= 400:  # noqa: PLR2004
                    response.read()
                    raise self._status_error(response)
                unregister = cancel.on_cancel(response.close) if cancel is not None else None
                try:
                    yield from response.iter_bytes()
                finally:
                    if unregister is not None:
                        unregister()
        except httpx.TimeoutException as exc:
            raise GenerationTimeoutError(f'Ollama stream timed out: {exc}', provider=self.provider_name) from exc
        except httpx.TransportError as exc:
            raise ProviderConnectionError(f'Ollama stream broke: {exc}', provider=self.provider_name) from exc

    # ------------------------------------------------------------------
    # Response mapping
    # ------------------------------------------------------------------

    def normalize(self, wire_response: WireResponse) -> CompletionResponse:
        try:
            msg = wire_response['message']
            message = Message(role=Role(msg.get('role') or 'assistant'), content=msg.get('content') or '')
            choice = Choice(index=0, message=message, finish_reason=_finish_reason(wire_response))
            return CompletionResponse(
                id=f'ollama-{uuid.uuid4().hex}',
                created=_created(wire_response.get('created_at')),
                model=wire_response.get('model') or '',
                choices=(choice,),
                usage=_usage(wire_response),
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise InvalidResponseError(f'Unexpected Ollama response shape: {exc}', provider=self.provider_name) from exc

    def normalize_chunk(self, unit: dict[str, Any]) -> StreamChunk | None:
        if 'error' in unit:
            raise ProviderError(str(unit['error']), provider=self.provider_name)
        content = (unit.get('message') or {}).get('content')
        if not unit.get('done'):
            return StreamChunk(delta_content=content, model=unit.get('model')) if content else None
        return StreamChunk(
            delta_content=content or None,
            finish_reason=_finish_reason(unit),
            usage=_usage(unit),
            model=unit.get('model'),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _endpoint(self, config: ProviderConfig | None) -> tuple[str, float]:
        base = self._api_base
        timeout = self._timeout
        if config is not None:
            if config.api_base:
                base = config.api_base.rstrip('/')
            if config.timeout_seconds is not None:
                timeout = config.timeout_seconds
        return f'{base}{CHAT_PATH}', timeout

    def _status_error(self, response: httpx.Response) -> LLMUnifyError:
        try:
            body = response.json()
            message = body.get('error') if isinstance(body, dict) else None
        except ValueError:
            message = None
        return error_from_status(
            response.status_code,
            provider=self.provider_name,
            message=str(message or response.text or f'HTTP {response.status_code}'),
            retry_after_seconds=parse_retry_after(response.headers.get('retry-after')),
        )


def _finish_reason(unit: dict[str, Any]) -> FinishReason | None:
    if not unit.get('done'):
        return None
    return FinishReason.parse(unit.get('done_reason')) or FinishReason.stop


def _usage(unit: dict[str, Any]) -> Usage | None:
    prompt, completion = unit.get('prompt_eval_count'), unit.get('eval_count')
    if prompt is None and completion is None:
        return None
    return Usage(prompt_tokens=prompt, completion_tokens=completion)


def _created(stamp: str | None) -> int:
    if stamp:
        try:
            return int(datetime.fromisoformat(stamp).timestamp())
        except ValueError:
            logger.debug('unparsable Ollama timestamp %r', stamp)
    return int(time.time())
