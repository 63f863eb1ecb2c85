"""policies.fallback

Fallback across configurations: try the called ``(provider, model, config)``
first, then each alternate in order, and return the first success.

A streaming attempt counts as failed only when it fails before its first
chunk; once a stream produced anything it is returned as is. When every
target fails, `FallbackExhaustedError` lists each attempt's error record.
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from llm_unify.core.exceptions import (
    ErrorKind,
    ErrorRecord,
    LLMUnifyError,
    RequestCancelledError,
)
from llm_unify.core.types import CompletionTarget, ProviderConfig
from llm_unify.dispatch.streaming import CompletionStream

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.dispatch.dispatcher import CompletionCall, CompletionResult, RequestLike

logger = logging.getLogger(__name__)

TargetLike = CompletionTarget | tuple[str, str] | tuple[str, str, ProviderConfig | None]


class FallbackAttempt(BaseModel):
    """One failed target and the error it produced."""

    target: CompletionTarget
    record: ErrorRecord

    model_config = ConfigDict(frozen=True)


class FallbackExhaustedError(LLMUnifyError):
    """Every target of a fallback chain failed.

    The record mirrors the last attempt's kind; it is retryable only if every
    attempt was.
    """

    def __init__(self, attempts: Iterable[FallbackAttempt]) -> None:
        self.attempts: tuple[FallbackAttempt, ...] = tuple(attempts)
        lines = '; '.join(f'{a.target}: {a.record.kind} ({a.record.message})' for a in self.attempts)
        message = f'all {len(self.attempts)} fallback targets failed: {lines}'
        super().__init__(message)
        if self.attempts:
            last = self.attempts[-1].record
            self.record = last.model_copy(
                update={
                    'message': message,
                    'retryable': all(a.record.retryable for a in self.attempts),
                }
            )


def as_target(target: TargetLike) -> CompletionTarget:
    if isinstance(target, CompletionTarget):
        return target
    provider, model, *rest = target
    return CompletionTarget(provider=provider, model=model, config=rest[0] if rest else None)


def _stream_failure(stream: CompletionStream) -> ErrorRecord | None:
    head = stream.peek()
    if head is None or head.error is None:
        return None
    return head.error


def with_fallback(
    alternates: Iterable[TargetLike],
    on_failure: Callable[[FallbackAttempt], None] | None = None,
) -> Callable[[CompletionCall], CompletionCall]:
    """Fall back to *alternates* when the called target fails.

    *on_failure* is called with every failed `FallbackAttempt`, including
    those followed by a successful target.
    """
    chain = tuple(as_target(t) for t in alternates)

    def notify(attempt: FallbackAttempt) -> None:
        if on_failure is None:
            return
        try:
            on_failure(attempt)
        except Exception:
            logger.exception('fallback on_failure hook raised')

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
            targets = (CompletionTarget(provider=provider, model=model, config=config), *chain)
            attempts: list[FallbackAttempt] = []
            for position, target in enumerate(targets):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    result = call(target.provider, target.model, request, target.config, cancel=cancel)
                except RequestCancelledError:
                    raise
                except LLMUnifyError as exc:
                    record = exc.record
                else:
                    if not isinstance(result, CompletionStream) or (record := _stream_failure(result)) is None:
                        if attempts:
                            logger.info('Fallback target %s succeeded after %d failures', target, len(attempts))
                        return result
                    result.close('falling back')
                    if record.kind is ErrorKind.cancelled:
                        raise LLMUnifyError.from_record(record)

                attempt = FallbackAttempt(target=target, record=record)
                attempts.append(attempt)
                notify(attempt)
                if position + 1 < len(targets):
                    logger.warning(
                        'Target %s failed (%s); falling back to %s',
                        target,
                        record.summary(),
                        targets[position + 1],
                    )

            raise FallbackExhaustedError(attempts)

        return wrapper

    return decorator
