"""policies.timeout

Deadline wrapper for completion calls.

The wrapped call runs on a worker thread while the caller waits at most
``seconds``. On expiry the call's cancellation token is cancelled, a late
result is released as soon as it shows up (late streams are closed), and the
caller gets a retryable `GenerationTimeoutError`.

For streaming calls the same deadline also covers the rest of the stream:
when it passes before the stream finished, the stream is aborted with a
terminal timeout chunk and its background task is cancelled.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import threading
import time
from typing import TYPE_CHECKING

from llm_unify.core.cancellation import CancellationToken
from llm_unify.core.exceptions import GenerationTimeoutError, ResourceExhaustedError
from llm_unify.dispatch.streaming import CompletionStream

if TYPE_CHECKING:
    from collections.abc import Callable

    from llm_unify.core.types import ProviderConfig
    from llm_unify.dispatch.dispatcher import CompletionCall, CompletionResult, RequestLike

logger = logging.getLogger(__name__)


def _release_late_result(future: concurrent.futures.Future[CompletionResult]) -> None:
    if future.exception() is not None:
        return
    result = future.result()
    if isinstance(result, CompletionStream):
        result.close('deadline already passed')


def _arm_stream_deadline(stream: CompletionStream, remaining: float, seconds: float) -> None:
    def expire() -> None:
        error = GenerationTimeoutError(
            f'stream {stream.provider}/{stream.model} exceeded {seconds:g}s',
            provider=stream.provider,
        )
        if stream.abort(error.record):
            logger.warning('Stream %s/%s aborted after %.2fs deadline', stream.provider, stream.model, seconds)

    if remaining <= 0:
        expire()
        return
    timer = threading.Timer(remaining, expire)
    timer.daemon = True
    timer.start()
    stream.add_done_callback(lambda _: timer.cancel())


def with_timeout(seconds: float) -> Callable[[CompletionCall], CompletionCall]:
    """Fail a call (or cut a stream) that takes longer than *seconds*."""
    if seconds <= 0:
        raise ValueError('timeout must be positive')

    def decorator(call: CompletionCall) -> CompletionCall:
        @functools.wraps(call)
        def wrapper(
            provider: str,
            model: str,
            request: RequestLike,
            config: ProviderConfig | None = None,
            *,
            cancel: CancellationToken | None = None,
        ) -> CompletionResult:
            token = cancel.child() if cancel is not None else CancellationToken()
            deadline = time.monotonic() + seconds
            future: concurrent.futures.Future[CompletionResult] = concurrent.futures.Future()

            def run() -> None:
                if not future.set_running_or_notify_cancel():
                    return
                try:
                    future.set_result(call(provider, model, request, config, cancel=token))
                except BaseException as exc:  # noqa: BLE001 - re-raised in the caller's thread
                    future.set_exception(exc)

            worker = threading.Thread(target=run, name=f'llm-unify-timeout-{provider}', daemon=True)
            try:
                worker.start()
            except RuntimeError as exc:
                raise ResourceExhaustedError(f'cannot start timeout worker: {exc}', provider=provider) from exc

            done, _ = concurrent.futures.wait([future], timeout=seconds)
            if not done:
                token.cancel(f'deadline of {seconds:g}s exceeded')
                future.add_done_callback(_release_late_result)
                logger.warning('Call to %s/%s timed out after %.2fs', provider, model, seconds)
                raise GenerationTimeoutError(
                    f'{provider}/{model} did not respond within {seconds:g}s',
                    provider=provider,
                )

            result = future.result()
            if isinstance(result, CompletionStream):
                _arm_stream_deadline(result, deadline - time.monotonic(), seconds)
            return result

        return wrapper

    return decorator
