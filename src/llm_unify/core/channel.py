"""core.channel

Bounded single-producer / single-consumer channel of `StreamChunk`.

Capacity is the only backpressure mechanism: a slow consumer makes the
producer block on `put` (data is never dropped while the channel is open).
The producer observes cancellation at every push attempt, so a consumer that
walks away does not strand the producer forever.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import StreamChunk

DEFAULT_CAPACITY = 64


class ChunkChannel:
    """Thread-safe bounded buffer with close and terminal-chunk semantics.

    * `put` appends a regular chunk, blocking while the buffer is full.
    * `put_terminal` appends the (single) terminal error chunk regardless of
      capacity and closes the channel; nothing can follow it.
    * `get` / `peek` return ``None`` once the channel is closed and drained.
    """

    # Upper bound on how long a blocked producer goes without re-checking its
    # cancellation token (tokens cancelled elsewhere do not notify us).
    _POLL_INTERVAL = 0.05

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError('capacity must be >= 1')
        self._capacity = capacity
        self._items: deque[StreamChunk] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def put(self, chunk: StreamChunk, cancel: CancellationToken | None = None) -> bool:
        """Append *chunk*; return ``False`` if the channel closed or *cancel* fired."""
        if chunk.is_error:
            raise ValueError('error chunks are terminal; use put_terminal()')
        with self._cond:
            while len(self._items) >= self._capacity and not self._closed:
                if cancel is not None and cancel.cancelled:
                    return False
                self._cond.wait(self._POLL_INTERVAL)
            if self._closed or (cancel is not None and cancel.cancelled):
                return False
            self._items.append(chunk)
            self._cond.notify_all()
            return True

    def put_terminal(self, chunk: StreamChunk) -> bool:
        """Append the terminal chunk and close. Only the first call wins."""
        with self._cond:
            if self._closed:
                return False
            self._items.append(chunk)
            self._closed = True
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def get(self, timeout: float | None = None) -> StreamChunk | None:
        """Pop the next chunk, or return ``None`` when closed and drained.

        Raises
        ------
        TimeoutError
            If *timeout* elapses with the channel still open and empty.

        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                raise TimeoutError(f'no chunk within {timeout}s')
            if not self._items:
                return None
            chunk = self._items.popleft()
            self._cond.notify_all()
            return chunk

    def peek(self, timeout: float | None = None) -> StreamChunk | None:
        """Like `get` but leaves the chunk in place."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._items or self._closed, timeout):
                raise TimeoutError(f'no chunk within {timeout}s')
            return self._items[0] if self._items else None

    def discard(self) -> None:
        """Drop buffered chunks and close (the consumer walked away)."""
        with self._cond:
            self._items.clear()
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[StreamChunk]:
        while (chunk := self.get()) is not None:
            yield chunk
