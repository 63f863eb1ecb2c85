"""policies.retry

Retry wrapper with exponential back-off and optional jitter.

Only errors flagged ``retryable`` are retried. A streaming call is retried
only when its very first item is a retryable terminal error, i.e. before any
content reached the consumer; a stream that already produced output is handed
back as is, failures included.
"""

from __future__ import annotations

import functools
import logging
import secrets
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from llm_unify.core.exceptions import LLMUnifyError
from llm_unify.dispatch.streaming import CompletionStream

if TYPE_CHECKING:
    from collections.abc import Callable

    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import ProviderConfig
    from llm_unify.dispatch.dispatcher import CompletionCall, CompletionResult, RequestLike

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Configuration for exponential back-off retry with optional jitter."""

    max_attempts: int = Field(default=3, ge=1, description='Total attempts including the first call')
    base_delay: float = Field(default=1.0, ge=0.0, description='Initial delay before first retry (seconds)')
    max_delay: float = Field(default=60.0, ge=0.0, description='Upper bound for any computed interval')
    jitter: bool = Field(default=False, description='Add random jitter (0-1s) to computed intervals')

    model_config = {
        'frozen': True,
    }

    def compute_delay(self, attempt_number: int, error: LLMUnifyError | None = None) -> float:
        """Sleep duration after failed attempt *attempt_number* (1-indexed).

        A ``retry_after_seconds`` hint on *error* is used verbatim.
        """
        if error is not None and error.record.retry_after_seconds is not None:
            return error.record.retry_after_seconds

        delay = min(self.base_delay * (2 ** (attempt_number - 1)), self.max_delay)
        if self.jitter:
            delay += secrets.randbelow(101) / 100
        return delay


def _first_item_error(stream: CompletionStream) -> LLMUnifyError | None:
    """Terminal error if the stream failed before delivering anything."""
    head = stream.peek()
    if head is None or head.error is None:
        return None
    return LLMUnifyError.from_record(head.error)


def with_retry(policy: RetryPolicy | None = None) -> Callable[[CompletionCall], CompletionCall]:
    """Retry decorator for completion calls.

    After ``max_attempts`` calls the last error is raised (blocking path) or
    the last failed stream is returned (streaming path).
    """
    retry_policy = policy or RetryPolicy()

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
            for attempt_number in range(1, retry_policy.max_attempts + 1):
                try:
                    result = call(provider, model, request, config, cancel=cancel)
                except LLMUnifyError as exc:
                    if not exc.retryable or attempt_number == retry_policy.max_attempts:
                        raise
                    error = exc
                else:
                    if not isinstance(result, CompletionStream):
                        return result
                    error = _first_item_error(result)
                    if error is None or not error.retryable or attempt_number == retry_policy.max_attempts:
                        return result
                    result.close('retrying')

                delay = retry_policy.compute_delay(attempt_number, error)
                logger.warning(
                    'Attempt %d/%d for %s/%s failed (%s); retrying in %.2fs',
                    attempt_number,
                    retry_policy.max_attempts,
                    provider,
                    model,
                    error.record.summary(),
                    delay,
                )
                time.sleep(delay)
                if cancel is not None:
                    cancel.raise_if_cancelled()

            # Unreachable: the last attempt always returns or raises
            raise AssertionError('retry loop exited without a result')

        return wrapper

    return decorator
