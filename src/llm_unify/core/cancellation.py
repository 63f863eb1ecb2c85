"""core.cancellation

Cooperative cancellation token passed from callers (and policy wrappers) down
to the dispatcher and the background stream task.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from llm_unify.core.exceptions import RequestCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """A cooperative cancellation token with cascading semantics.

    Thread-safe. Child tokens inherit cancellation when the parent is
    cancelled; cancelling a child never affects the parent.
    """

    def __init__(self, *, parent: CancellationToken | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._children: list[CancellationToken] = []
        self._callbacks: list[Callable[[], None]] = []
        if parent is not None:
            parent.link_child(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation and cascade to children. Idempotent."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            _run_callback(fn)
        for child in children:
            child.cancel(reason)

    def link_child(self, token: CancellationToken) -> CancellationToken:
        with self._lock:
            self._children.append(token)
            already_cancelled = self._event.is_set()
        if already_cancelled:
            token.cancel(self._reason)
        return token

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def on_cancel(self, fn: Callable[[], None]) -> Callable[[], None]:
        """Run *fn* once when the token is cancelled (now, if it already is).

        Returns a function that unregisters *fn*. Adapters use this to close a
        live backend connection so that a blocked read fails promptly.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return lambda: self._discard_callback(fn)
        _run_callback(fn)
        return lambda: None

    def _discard_callback(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if fn in self._callbacks:
                self._callbacks.remove(fn)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or *timeout* elapses; return ``cancelled``."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self._reason or 'operation cancelled')

    def __repr__(self) -> str:  # pragma: no cover - introspection aid
        return f'CancellationToken(cancelled={self.cancelled}, reason={self._reason!r})'


def _run_callback(fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        logger.exception('cancellation callback %r failed', fn)
