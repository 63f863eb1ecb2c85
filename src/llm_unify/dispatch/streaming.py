"""dispatch.streaming

Background stream task and the consumer-facing `CompletionStream`.

One daemon thread per in-flight streaming call reads the adapter's raw byte
stream, frames and parses it, normalizes each unit into a `StreamChunk` and
pushes it onto a bounded `ChunkChannel`. The caller drains the channel
through `CompletionStream`.

Lifecycle::

    idle -> opening -> streaming -> completed
               |           |
               +-----------+-----> errored

A stream carries at most one error, delivered as the last chunk. Failures
after content was pushed are reported as non-retryable `StreamingError`s,
since replaying the call would duplicate tokens the consumer already has.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from llm_unify.core.cancellation import CancellationToken
from llm_unify.core.channel import DEFAULT_CAPACITY, ChunkChannel
from llm_unify.core.exceptions import (
    ErrorKind,
    ErrorRecord,
    InternalError,
    LLMUnifyError,
    RequestCancelledError,
    ResourceExhaustedError,
    classify_exception,
)
from llm_unify.core.types import (
    Choice,
    CompletionResponse,
    FinishReason,
    Message,
    Role,
    StreamChunk,
    ToolCall,
)
from llm_unify.core.wire import DONE, FrameReader

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from llm_unify.core.abc import AbstractProviderAdapter, WireRequest
    from llm_unify.core.types import ProviderConfig, Usage

logger = logging.getLogger(__name__)


class StreamState(StrEnum):
    idle = 'idle'
    opening = 'opening'
    streaming = 'streaming'
    completed = 'completed'
    errored = 'errored'

    @property
    def terminal(self) -> bool:
        return self in (StreamState.completed, StreamState.errored)


_TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.idle: frozenset({StreamState.opening}),
    StreamState.opening: frozenset({StreamState.streaming, StreamState.errored}),
    StreamState.streaming: frozenset({StreamState.completed, StreamState.errored}),
    StreamState.completed: frozenset(),
    StreamState.errored: frozenset(),
}


# ---------------------------------------------------------------------------
# Consumer handle
# ---------------------------------------------------------------------------


class CompletionStream:
    """Iterator of `StreamChunk` for one streaming call.

    Iterate it (or call `get`) until exhausted. A chunk whose ``error`` is set
    is always the last one. Use it as a context manager, or call `close`, to
    stop the background task early.
    """

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        capacity: int = DEFAULT_CAPACITY,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self._channel = ChunkChannel(capacity)
        self._cancel = cancel.child() if cancel is not None else CancellationToken()
        self._lock = threading.Lock()
        self._state = StreamState.idle
        self._error: ErrorRecord | None = None
        self._usage: Usage | None = None
        self._pushed = 0
        self._delivered = 0
        self._done = threading.Event()
        self._callbacks: list[Callable[[CompletionStream], None]] = []

    # --------------------------- Introspection --------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def error(self) -> ErrorRecord | None:
        """Terminal error record, once the stream has errored."""
        return self._error

    @property
    def usage(self) -> Usage | None:
        """Most recent usage reported by the backend (usually on the last chunk)."""
        return self._usage

    @property
    def done(self) -> bool:
        return self._state.terminal

    @property
    def delivered(self) -> int:
        """Number of chunks handed to the consumer so far."""
        return self._delivered

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel

    # --------------------------- Consumption ----------------------------

    def __iter__(self) -> Iterator[StreamChunk]:
        return self

    def __next__(self) -> StreamChunk:
        chunk = self.get()
        if chunk is None:
            raise StopIteration
        return chunk

    def get(self, timeout: float | None = None) -> StreamChunk | None:
        """Next chunk, or ``None`` once the stream is finished and drained."""
        chunk = self._channel.get(timeout)
        if chunk is not None:
            self._delivered += 1
        return chunk

    def peek(self, timeout: float | None = None) -> StreamChunk | None:
        """Wait for the next chunk without consuming it."""
        return self._channel.peek(timeout)

    def iter_content(self) -> Iterator[str]:
        """Yield content deltas; raise the terminal error if the stream fails."""
        for chunk in self:
            if chunk.error is not None:
                raise LLMUnifyError.from_record(chunk.error)
            if chunk.delta_content:
                yield chunk.delta_content

    def collect(self) -> CompletionResponse:
        """Drain the stream and assemble the equivalent blocking response."""
        builder = _ResponseBuilder(self.model)
        for chunk in self:
            if chunk.error is not None:
                raise LLMUnifyError.from_record(chunk.error)
            builder.add(chunk)
        return builder.build(self._usage)

    # --------------------------- Control --------------------------------

    def close(self, reason: str = 'stream closed by consumer') -> None:
        """Stop the background task and drop anything still buffered."""
        self._cancel.cancel(reason)
        self._channel.discard()

    def abort(self, record: ErrorRecord) -> bool:
        """End the stream with *record* as its terminal chunk.

        Chunks already buffered stay readable. Returns ``False`` if the stream
        had already finished; a stream the producer completed concurrently is
        left completed.
        """
        record = self._terminal_record(record)
        if not self._terminate(StreamState.errored, record, require_delivery=True):
            return False
        self._cancel.cancel(record.message)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the stream finished and its done-callbacks ran."""
        return self._done.wait(timeout)

    def add_done_callback(self, fn: Callable[[CompletionStream], None]) -> None:
        """Call *fn(stream)* once the stream completes or errors."""
        with self._lock:
            if not self._state.terminal:
                self._callbacks.append(fn)
                return
        self._invoke_callback(fn)

    def __enter__(self) -> CompletionStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return f'<CompletionStream {self.provider}/{self.model} state={self._state}>'

    # --------------------------- Producer side --------------------------

    def _advance(self, new: StreamState) -> bool:
        with self._lock:
            if self._state is new or self._state.terminal:
                return False
            if new not in _TRANSITIONS[self._state]:
                raise InternalError(f'illegal stream transition {self._state} -> {new}')
            logger.debug('stream %s/%s: %s -> %s', self.provider, self.model, self._state, new)
            self._state = new
            return True

    def _record_push(self, chunk: StreamChunk) -> None:
        self._pushed += 1
        if chunk.usage is not None:
            self._usage = chunk.usage

    def _finish(self, state: StreamState, error: ErrorRecord | None = None) -> None:
        self._terminate(state, error)

    def _terminate(
        self,
        state: StreamState,
        error: ErrorRecord | None = None,
        *,
        require_delivery: bool = False,
    ) -> bool:
        """Move to the terminal *state*, pushing *error* as the last chunk.

        The terminal check, the error chunk and the state change happen under
        one lock, so a concurrent `abort` and producer finish cannot both win.
        With *require_delivery*, nothing changes if the chunk cannot be queued.
        """
        with self._lock:
            if self._state.terminal:
                return False
            if error is not None:
                queued = self._channel.put_terminal(StreamChunk.from_error(error))
                if require_delivery and not queued:
                    return False
            if state is StreamState.completed and self._state is StreamState.opening:
                self._state = StreamState.streaming
            if state not in _TRANSITIONS[self._state]:
                raise InternalError(f'illegal stream transition {self._state} -> {state}')
            logger.debug('stream %s/%s: %s -> %s', self.provider, self.model, self._state, state)
            self._state = state
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            self._invoke_callback(fn)
        self._done.set()
        return True

    def _fail(self, error: LLMUnifyError) -> None:
        self._terminate(StreamState.errored, self._terminal_record(error.record))

    def _terminal_record(self, record: ErrorRecord) -> ErrorRecord:
        if self._pushed and record.kind is not ErrorKind.cancelled:
            record = ErrorRecord(
                kind=ErrorKind.streaming_error,
                message=f'{record.kind}: {record.message} (after {self._pushed} chunks)',
                provider=record.provider,
                http_status=record.http_status,
                provider_code=record.provider_code,
                retryable=False,
                request_id=record.request_id,
            )
        return record

    def _invoke_callback(self, fn: Callable[[CompletionStream], None]) -> None:
        try:
            fn(self)
        except Exception:
            logger.exception('stream done-callback %r failed', fn)


# ---------------------------------------------------------------------------
# Producer
# ---------------------------------------------------------------------------

_CONTINUE, _END, _STOP = 'continue', 'end', 'stop'


class _StreamPump:
    """Body of the background thread for one stream."""

    def __init__(
        self,
        adapter: AbstractProviderAdapter,
        wire_request: WireRequest,
        config: ProviderConfig | None,
        stream: CompletionStream,
    ) -> None:
        self.adapter = adapter
        self.wire_request = wire_request
        self.config = config
        self.stream = stream
        self.provider = adapter.provider_name
        self.reader = FrameReader(adapter.wire_format)
        self.skipped = 0

    def run(self) -> None:
        stream = self.stream
        token = stream.cancel_token
        raw = None
        try:
            token.raise_if_cancelled()
            raw = self.adapter.execute_streaming(self.wire_request, self.config, cancel=token)
            if self._consume(raw):
                stream._finish(StreamState.completed)
        except Exception as exc:  # noqa: BLE001 - every failure becomes the terminal chunk
            if token.cancelled:
                # Closing the connection on cancel makes the blocked read fail
                logger.debug('stream %s/%s read ended after cancel: %r', self.provider, stream.model, exc)
                reason = token.reason or 'stream cancelled'
                stream._fail(RequestCancelledError(reason, provider=self.provider))
            else:
                stream._fail(classify_exception(exc, self.provider))
        finally:
            _release(raw)
            stream._channel.close()
            if not stream.done:
                reason = stream.cancel_token.reason or 'stream cancelled'
                stream._finish(StreamState.errored, RequestCancelledError(reason, provider=self.provider).record)
            if self.skipped:
                logger.info('stream %s/%s skipped %d malformed units', self.provider, stream.model, self.skipped)

    def _consume(self, raw: Iterator[bytes]) -> bool:
        """Pump *raw* into the channel; ``True`` means a clean end of stream."""
        token = self.stream.cancel_token
        for data in raw:
            if token.cancelled:
                return False
            self.stream._advance(StreamState.streaming)
            for text in self.reader.feed(data):
                outcome = self._handle(text)
                if outcome is not _CONTINUE:
                    return outcome is _END
        for text in self.reader.flush():
            outcome = self._handle(text)
            if outcome is not _CONTINUE:
                return outcome is _END
        return not token.cancelled

    def _handle(self, text: str) -> str:
        try:
            unit = self.adapter.parse_unit(text)
            if unit is None:
                return _CONTINUE
            if unit is DONE:
                return _END
            chunk = self.adapter.normalize_chunk(unit)
        except LLMUnifyError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            self.skipped += 1
            logger.warning('Skipping malformed stream unit from %s: %s', self.provider, exc)
            return _CONTINUE
        if chunk is None:
            return _CONTINUE
        if not self.stream._channel.put(chunk, self.stream.cancel_token):
            return _STOP
        self.stream._record_push(chunk)
        return _CONTINUE


def _release(raw: Any) -> None:
    close = getattr(raw, 'close', None)
    if not callable(close):
        return
    try:
        close()
    except Exception:  # noqa: BLE001 - connection teardown is best effort
        logger.debug('closing raw stream failed', exc_info=True)


def open_stream(
    adapter: AbstractProviderAdapter,
    wire_request: WireRequest,
    config: ProviderConfig | None = None,
    *,
    model: str,
    capacity: int = DEFAULT_CAPACITY,
    cancel: CancellationToken | None = None,
) -> CompletionStream:
    """Start the background task and return its stream without waiting."""
    stream = CompletionStream(provider=adapter.provider_name, model=model, capacity=capacity, cancel=cancel)
    stream._advance(StreamState.opening)
    pump = _StreamPump(adapter, wire_request, config, stream)
    thread = threading.Thread(target=pump.run, name=f'llm-unify-stream-{adapter.provider_name}', daemon=True)
    try:
        thread.start()
    except RuntimeError as exc:
        raise ResourceExhaustedError(f'cannot start stream task: {exc}', provider=adapter.provider_name) from exc
    return stream


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class _ResponseBuilder:
    """Concatenate deltas per choice into a `CompletionResponse`."""

    def __init__(self, model: str) -> None:
        self.model = model
        self.id: str | None = None
        self.content: dict[int, list[str]] = {}
        self.finish: dict[int, FinishReason | None] = {}
        self.tools: dict[int, dict[int, dict[str, str]]] = {}

    def add(self, chunk: StreamChunk) -> None:
        self.id = self.id or chunk.id
        if chunk.model:
            self.model = chunk.model
        idx = chunk.choice_index
        parts = self.content.setdefault(idx, [])
        if chunk.delta_content:
            parts.append(chunk.delta_content)
        for partial in chunk.delta_tool_calls or ():
            call = self.tools.setdefault(idx, {}).setdefault(partial.index, {'id': '', 'name': '', 'args': ''})
            call['id'] = partial.id or call['id']
            call['name'] += partial.name or ''
            call['args'] += partial.arguments_delta or ''
        if chunk.finish_reason is not None:
            self.finish[idx] = chunk.finish_reason

    def build(self, usage: Usage | None) -> CompletionResponse:
        choices = []
        for idx in sorted(self.content):
            calls = self.tools.get(idx)
            tool_calls = (
                tuple(
                    ToolCall(id=c['id'], name=c['name'], arguments_json=c['args'] or '{}')
                    for _, c in sorted(calls.items())
                )
                if calls
                else None
            )
            message = Message(role=Role.assistant, content=''.join(self.content[idx]), tool_calls=tool_calls)
            choices.append(Choice(index=idx, message=message, finish_reason=self.finish.get(idx)))
        return CompletionResponse(
            id=self.id or f'stream-{uuid.uuid4().hex}',
            created=int(time.time()),
            model=self.model,
            choices=tuple(choices),
            usage=usage,
        )
