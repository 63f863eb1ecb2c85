"""core.wire

Incremental parsing of the two streaming wire formats adapters deliver:

* ``WireFormat.SSE`` - server-sent events (``data: {...}`` frames separated by
  blank lines) terminated by the ``[DONE]`` sentinel.
* ``WireFormat.NDJSON`` - one bare JSON document per line; the stream ends
  when the connection does.

Raw network reads arrive in arbitrary slices, so `LineFramer` reassembles
lines and `SSEDecoder` reassembles events before anything is parsed. Parsing
a unit is separate (`parse_event`) so the stream task can skip one bad unit
without abandoning the stream.
"""

from __future__ import annotations

import codecs
import json
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Iterator


class WireFormat(StrEnum):
    SSE = 'sse'
    NDJSON = 'ndjson'


class _Done:
    """Sentinel type for the end-of-stream marker."""

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return 'DONE'


DONE: Final = _Done()
SSE_DONE_SENTINEL: Final = '[DONE]'


class MalformedFrameError(ValueError):
    """A single stream unit could not be parsed."""

    def __init__(self, text: str, reason: str) -> None:
        super().__init__(f'Malformed stream frame ({reason}): {text[:200]!r}')
        self.text = text
        self.reason = reason


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


class LineFramer:
    """Split an incremental byte (or text) stream into lines.

    Handles ``\\n`` and ``\\r\\n`` endings and multi-byte UTF-8 characters
    split across reads. The trailing partial line is held back until the next
    `feed` or the final `flush`.
    """

    def __init__(self, encoding: str = 'utf-8') -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        self._buffer = ''

    def feed(self, data: bytes | str) -> list[str]:
        text = data if isinstance(data, str) else self._decoder.decode(data)
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split('\n')
        return [line.removesuffix('\r') for line in lines]

    def flush(self) -> list[str]:
        tail = self._buffer + self._decoder.decode(b'', final=True)
        self._buffer = ''
        return [tail.removesuffix('\r')] if tail else []


class SSEDecoder:
    """Assemble server-sent-event lines into event payloads.

    Only the ``data`` field matters here; ``event``, ``id``, ``retry`` fields
    and ``:`` comments are ignored. Multiple ``data`` lines in one event are
    joined with newlines as the SSE format prescribes.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> list[str]:
        if not line:
            return self._dispatch()
        if line.startswith(':'):
            return []
        name, _, value = line.partition(':')
        if name == 'data':
            self._data.append(value.removeprefix(' '))
        return []

    def flush(self) -> list[str]:
        return self._dispatch()

    def _dispatch(self) -> list[str]:
        if not self._data:
            return []
        event, self._data = '\n'.join(self._data), []
        return [event]


class FrameReader:
    """Bytes in, complete units (event payloads or JSON lines) out."""

    def __init__(self, wire_format: WireFormat) -> None:
        self.wire_format = wire_format
        self._lines = LineFramer()
        self._sse = SSEDecoder() if wire_format is WireFormat.SSE else None

    def feed(self, data: bytes | str) -> Iterator[str]:
        for line in self._lines.feed(data):
            yield from self._unit(line)

    def flush(self) -> Iterator[str]:
        for line in self._lines.flush():
            yield from self._unit(line)
        if self._sse is not None:
            yield from self._sse.flush()

    def _unit(self, line: str) -> list[str]:
        if self._sse is not None:
            return self._sse.feed(line)
        return [line] if line.strip() else []


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_event(text: str, wire_format: WireFormat) -> dict[str, Any] | _Done | None:
    """Parse one unit.

    Returns `DONE` for the SSE termination sentinel, ``None`` for an empty
    unit, and the decoded JSON object otherwise.

    Raises
    ------
    MalformedFrameError
        If the unit is not a JSON object.

    """
    payload = text.strip()
    if not payload:
        return None
    if wire_format is WireFormat.SSE and payload == SSE_DONE_SENTINEL:
        return DONE
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedFrameError(payload, exc.msg) from exc
    if not isinstance(data, dict):
        raise MalformedFrameError(payload, f'expected an object, got {type(data).__name__}')
    return data
