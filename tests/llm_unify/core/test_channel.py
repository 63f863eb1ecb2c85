from __future__ import annotations

import threading
import time

import pytest

from llm_unify.core.cancellation import CancellationToken
from llm_unify.core.channel import ChunkChannel
from llm_unify.core.exceptions import ErrorKind, ErrorRecord
from llm_unify.core.types import StreamChunk


def _chunk(text: str) -> StreamChunk:
    return StreamChunk(delta_content=text)


def _error_chunk() -> StreamChunk:
    return StreamChunk.from_error(ErrorRecord(kind=ErrorKind.server_error, message='boom', retryable=True))


def test_fifo_and_close() -> None:
    ch = ChunkChannel(4)
    assert ch.put(_chunk('a'))
    assert ch.put(_chunk('b'))
    ch.close()
    assert [c.delta_content for c in ch] == ['a', 'b']
    assert ch.get() is None
    assert not ch.put(_chunk('c'))


def test_rejects_bad_capacity_and_error_via_put() -> None:
    with pytest.raises(ValueError, match='capacity'):
        ChunkChannel(0)
    with pytest.raises(ValueError, match='terminal'):
        ChunkChannel().put(_error_chunk())


def test_terminal_goes_past_capacity_once() -> None:
    ch = ChunkChannel(1)
    ch.put(_chunk('a'))
    assert ch.put_terminal(_error_chunk())
    assert not ch.put_terminal(_error_chunk())
    assert len(ch) == 2  # noqa: PLR2004
    assert ch.get().delta_content == 'a'
    assert ch.get().is_error
    assert ch.get() is None


def test_full_channel_blocks_producer_until_consumer_reads() -> None:
    ch = ChunkChannel(1)
    ch.put(_chunk('a'))
    pushed = threading.Event()

    def producer() -> None:
        ch.put(_chunk('b'))
        pushed.set()

    threading.Thread(target=producer, daemon=True).start()
    assert not pushed.wait(0.2)
    assert ch.get().delta_content == 'a'
    assert pushed.wait(2)
    assert ch.get().delta_content == 'b'


def test_blocked_put_observes_cancellation() -> None:
    ch = ChunkChannel(1)
    ch.put(_chunk('a'))
    token = CancellationToken()
    threading.Timer(0.1, token.cancel).start()
    started = time.monotonic()
    assert ch.put(_chunk('b'), token) is False
    assert time.monotonic() - started < 2  # noqa: PLR2004


def test_get_and_peek_timeout() -> None:
    ch = ChunkChannel()
    with pytest.raises(TimeoutError):
        ch.get(timeout=0.05)
    with pytest.raises(TimeoutError):
        ch.peek(timeout=0.05)
    ch.put(_chunk('a'))
    assert ch.peek().delta_content == 'a'
    assert len(ch) == 1


def test_discard_drops_buffer() -> None:
    ch = ChunkChannel()
    ch.put(_chunk('a'))
    ch.discard()
    assert ch.closed
    assert ch.get() is None
