from __future__ import annotations

import time

import pytest

from llm_unify.adapters.mock_adapter import MockAdapter
from llm_unify.core.exceptions import (
    AuthenticationError,
    ErrorKind,
    RateLimitExceededError,
    ServerError,
)
from llm_unify.dispatch.dispatcher import CompletionDispatcher
from llm_unify.dispatch.streaming import CompletionStream
from llm_unify.policies.retry import RetryPolicy, with_retry
from llm_unify.registry.provider_registry import AdapterRegistry

_HI = {'messages': [{'role': 'user', 'content': 'hi'}]}


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    # time.sleep をスタブ化して高速化
    recorded: list[float] = []
    monkeypatch.setattr(time, 'sleep', recorded.append)
    return recorded


def _dispatcher(adapter: MockAdapter) -> CompletionDispatcher:
    return CompletionDispatcher(AdapterRegistry({'mock': adapter}))


def test_compute_delay_without_jitter() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=60.0)
    assert policy.compute_delay(1) == 1.0  # 1 * 2^(1-1)
    assert policy.compute_delay(2) == 2.0  # 1 * 2^(2-1)  # noqa: PLR2004
    # 上限チェック
    assert policy.compute_delay(10) == policy.max_delay


def test_retry_after_is_used_verbatim() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=2.0, jitter=True)
    assert policy.compute_delay(5, RateLimitExceededError('busy', retry_after_seconds=30.0)) == 30.0  # noqa: PLR2004
    assert 2.0 <= policy.compute_delay(5) <= 3.0  # noqa: PLR2004


def test_success_first_try(sleeps: list[float]) -> None:
    adapter = MockAdapter()
    call = with_retry(RetryPolicy(max_attempts=3, base_delay=0))(_dispatcher(adapter).complete)
    assert call('mock', 'm', _HI).content == 'mock response'
    assert adapter.calls == 1
    assert sleeps == []


def test_eventual_success(sleeps: list[float]) -> None:
    adapter = MockAdapter()
    adapter.queue_error(ServerError('down')).queue_error(ServerError('down')).queue_response('done')
    call = with_retry(RetryPolicy(max_attempts=3, base_delay=0.5))(_dispatcher(adapter).complete)

    assert call('mock', 'm', _HI).content == 'done'
    assert adapter.calls == 3  # noqa: PLR2004
    assert sleeps == [0.5, 1.0]


def test_exhaustion_raises_last_error(sleeps: list[float]) -> None:
    adapter = MockAdapter()
    for i in range(3):
        adapter.queue_error(ServerError(f'down {i}'))
    call = with_retry(RetryPolicy(max_attempts=2, base_delay=0))(_dispatcher(adapter).complete)

    with pytest.raises(ServerError, match='down 1'):
        call('mock', 'm', _HI)
    assert adapter.calls == 2  # noqa: PLR2004
    assert len(sleeps) == 1


def test_non_retryable_is_not_retried(sleeps: list[float]) -> None:
    adapter = MockAdapter().queue_error(AuthenticationError('bad key'))
    call = with_retry(RetryPolicy(max_attempts=5))(_dispatcher(adapter).complete)
    with pytest.raises(AuthenticationError):
        call('mock', 'm', _HI)
    assert adapter.calls == 1
    assert sleeps == []


def test_rate_limit_hint_wins(sleeps: list[float]) -> None:
    adapter = MockAdapter().queue_error(RateLimitExceededError('busy', retry_after_seconds=7.0))
    call = with_retry(RetryPolicy(max_attempts=2, base_delay=1.0))(_dispatcher(adapter).complete)
    call('mock', 'm', _HI)
    assert sleeps == [7.0]


def test_stream_failing_before_first_chunk_is_retried(sleeps: list[float]) -> None:
    adapter = MockAdapter()
    adapter.queue_stream([ServerError('down')]).queue_text_stream('ok')
    call = with_retry(RetryPolicy(max_attempts=3, base_delay=0))(_dispatcher(adapter).complete)

    stream = call('mock', 'm', {**_HI, 'stream': True})
    assert isinstance(stream, CompletionStream)
    assert stream.collect().content == 'ok'
    assert adapter.calls == 2  # noqa: PLR2004
    assert len(sleeps) == 1


def test_stream_with_delivered_content_is_not_retried(sleeps: list[float]) -> None:
    adapter = MockAdapter()
    adapter.queue_stream([{'content': 'partial'}, ServerError('down')], done=False).queue_text_stream('never')
    call = with_retry(RetryPolicy(max_attempts=3, base_delay=0))(_dispatcher(adapter).complete)

    chunks = list(call('mock', 'm', {**_HI, 'stream': True}))
    assert chunks[0].delta_content == 'partial'
    assert chunks[-1].error.kind is ErrorKind.streaming_error
    assert adapter.calls == 1
    assert sleeps == []
