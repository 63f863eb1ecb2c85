"""adapters.mock_adapter

Deterministic, scripted adapter for offline use and tests.

Replies are queued up front and consumed in order, one per backend call:

* `queue_response` / `queue_error` feed the blocking path;
* `queue_stream` feeds the streaming path with SSE frames (dicts are encoded
  as ``data:`` events, ``bytes``/``str`` are sent raw so malformed input can
  be simulated, exceptions are raised at that point of the stream).

With nothing queued the adapter answers with `default_content`. An optional
`hang` event blocks every call until it is set, which is how slow backends
are simulated; a stalled stream also gives up once its cancel token fires.
`open_streams` counts streams whose generator has not finished yet. No
network traffic is issued.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any

from llm_unify.core.abc import AbstractProviderAdapter
from llm_unify.core.exceptions import ProviderConnectionError, error_from_status
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
from llm_unify.core.wire import SSE_DONE_SENTINEL, WireFormat

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from llm_unify.core.abc import WireRequest, WireResponse
    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import CompletionRequest, ProviderConfig

logger = logging.getLogger(__name__)

_STALL_POLL_SECONDS = 0.01

StreamFrame = dict[str, Any] | bytes | str | BaseException


def sse_frame(payload: dict[str, Any] | str) -> bytes:
    """Encode one server-sent event."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f'data: {data}\n\n'.encode()


class MockAdapter(AbstractProviderAdapter):
    """Adapter that replays scripted replies instead of calling a backend."""

    provider_name = 'mock'
    wire_format = WireFormat.SSE

    def __init__(
        self,
        *,
        name: str = 'mock',
        capabilities: Capabilities | None = None,
        default_content: str = 'mock response',
        hang: threading.Event | None = None,
    ) -> None:
        self.provider_name = name
        self._capabilities = capabilities or Capabilities(streaming=True, tool_calling=True)
        self.default_content = default_content
        self.hang = hang
        self._replies: deque[WireResponse | BaseException] = deque()
        self._streams: deque[list[StreamFrame]] = deque()
        self._lock = threading.Lock()
        self.calls = 0
        self.open_streams = 0
        self.requests: list[WireRequest] = []
        self.configs: list[ProviderConfig | None] = []

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def queue_response(
        self,
        content: str = 'mock response',
        *,
        usage: Usage | dict[str, int] | None = None,
        finish_reason: str = 'stop',
        model: str | None = None,
    ) -> MockAdapter:
        if isinstance(usage, Usage):
            usage = usage.model_dump(exclude_none=True)
        self._replies.append(
            {
                'id': f'mock-{uuid.uuid4().hex[:12]}',
                'model': model,
                'content': content,
                'finish_reason': finish_reason,
                'usage': usage,
            }
        )
        return self

    def queue_error(self, error: BaseException) -> MockAdapter:
        self._replies.append(error)
        return self

    def queue_stream(self, frames: Iterable[StreamFrame], *, done: bool = True) -> MockAdapter:
        """Queue one stream; ``done`` appends the ``[DONE]`` sentinel."""
        scripted = list(frames)
        if done:
            scripted.append(sse_frame(SSE_DONE_SENTINEL))
        self._streams.append(scripted)
        return self

    def queue_text_stream(self, *pieces: str, usage: dict[str, int] | None = None) -> MockAdapter:
        """Queue a clean stream delivering *pieces* then a final stop chunk."""
        frames: list[StreamFrame] = [{'content': p} for p in pieces]
        frames.append({'finish_reason': 'stop', 'usage': usage})
        return self.queue_stream(frames)

    # ------------------------------------------------------------------
    # Adapter contract
    # ------------------------------------------------------------------

    def capabilities(self) -> Capabilities:
        return self._capabilities

    def transform(self, request: CompletionRequest) -> WireRequest:
        return request.model_dump(mode='json', exclude_none=True)

    def execute(self, wire_request: WireRequest, config: ProviderConfig | None = None) -> WireResponse:
        self._record(wire_request, config)
        self._maybe_hang()
        with self._lock:
            reply = self._replies.popleft() if self._replies else None
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            reply = {'id': f'mock-{uuid.uuid4().hex[:12]}', 'content': self.default_content, 'finish_reason': 'stop'}
        return {**reply, 'model': reply.get('model') or wire_request.get('model')}

    def execute_streaming(
        self,
        wire_request: WireRequest,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Iterator[bytes]:
        self._record(wire_request, config)
        closed = threading.Event()
        unregister = cancel.on_cancel(closed.set) if cancel is not None else None
        with self._lock:
            self.open_streams += 1
        try:
            self._stall(closed)
            with self._lock:
                frames = self._streams.popleft() if self._streams else None
            if frames is None:
                frames = [{'content': word} for word in self.default_content.split(' ')]
                frames += [{'finish_reason': 'stop'}, sse_frame(SSE_DONE_SENTINEL)]
            for frame in frames:
                if closed.is_set():
                    raise ProviderConnectionError('mock stream closed', provider=self.provider_name)
                if isinstance(frame, BaseException):
                    raise frame
                if isinstance(frame, dict):
                    yield sse_frame({'model': wire_request.get('model'), **frame})
                else:
                    yield frame if isinstance(frame, bytes) else frame.encode()
        finally:
            if unregister is not None:
                unregister()
            with self._lock:
                self.open_streams -= 1

    def normalize(self, wire_response: WireResponse) -> CompletionResponse:
        usage = wire_response.get('usage')
        message = Message(role=Role.assistant, content=wire_response.get('content') or '')
        return CompletionResponse(
            id=wire_response['id'],
            created=int(time.time()),
            model=wire_response.get('model') or '',
            choices=(Choice(message=message, finish_reason=FinishReason.parse(wire_response.get('finish_reason'))),),
            usage=Usage(**usage) if usage else None,
        )

    def normalize_chunk(self, unit: dict[str, Any]) -> StreamChunk | None:
        if (error := unit.get('error')) is not None:
            raise error_from_status(
                int(error.get('status', 500)),
                provider=self.provider_name,
                message=error.get('message'),
            )
        usage = unit.get('usage')
        chunk = StreamChunk(
            delta_content=unit.get('content'),
            finish_reason=FinishReason.parse(unit.get('finish_reason')),
            usage=Usage(**usage) if usage else None,
            model=unit.get('model'),
        )
        if chunk.delta_content is None and chunk.finish_reason is None and chunk.usage is None:
            return None
        return chunk

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, wire_request: WireRequest, config: ProviderConfig | None) -> None:
        with self._lock:
            self.calls += 1
            self.requests.append(wire_request)
            self.configs.append(config)
        logger.debug('mock %s call #%d', self.provider_name, self.calls)

    def _maybe_hang(self) -> None:
        if self.hang is not None:
            self.hang.wait()

    def _stall(self, closed: threading.Event) -> None:
        """Like `_maybe_hang`, but gives up once the stream is closed."""
        if self.hang is None:
            return
        while not self.hang.wait(_STALL_POLL_SECONDS):
            if closed.is_set():
                raise ProviderConnectionError('mock stream closed', provider=self.provider_name)
