"""policies.compose

Stack policy wrappers around a completion call::

    call = compose(
        dispatcher.complete,
        with_fallback([('ollama', 'llama3')]),
        with_retry(RetryPolicy(max_attempts=3)),
        with_timeout(20.0),
    )

The first wrapper is the outermost one. In the example every fallback target
gets its own retries, and every attempt its own 20 second deadline.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_unify.dispatch.dispatcher import CompletionCall

Wrapper = Callable[['CompletionCall'], 'CompletionCall']


def compose(call: CompletionCall, *wrappers: Wrapper) -> CompletionCall:
    for wrapper in reversed(wrappers):
        call = wrapper(call)
    return call
