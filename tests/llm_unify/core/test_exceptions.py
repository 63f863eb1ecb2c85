from __future__ import annotations

from datetime import UTC, datetime, timedelta
from email.utils import format_datetime

import pytest

from llm_unify.core.exceptions import (
    AuthenticationError,
    ErrorCategory,
    ErrorKind,
    ErrorRecord,
    GenerationTimeoutError,
    InvalidRequestError,
    LLMUnifyError,
    ProviderConnectionError,
    ProviderError,
    QuotaExceededError,
    RateLimitExceededError,
    ServerError,
    StreamingError,
    classify_exception,
    error_from_status,
    parse_retry_after,
)


@pytest.mark.parametrize(
    ('status', 'kind', 'retryable'),
    [
        (400, ErrorKind.invalid_request, False),
        (401, ErrorKind.authentication_error, False),
        (403, ErrorKind.authorization_error, False),
        (404, ErrorKind.model_not_found, False),
        (408, ErrorKind.timeout, True),
        (429, ErrorKind.rate_limited, True),
        (500, ErrorKind.server_error, True),
        (502, ErrorKind.server_error, True),
        (503, ErrorKind.server_error, True),
        (504, ErrorKind.server_error, True),
        (418, ErrorKind.provider_error, False),
        (507, ErrorKind.provider_error, True),
    ],
)
def test_status_mapping(status: int, kind: ErrorKind, retryable: bool) -> None:
    err = error_from_status(status, provider='p')
    assert err.record.kind is kind
    assert err.retryable is retryable
    assert err.record.http_status == status
    assert err.provider == 'p'


def test_status_mapping_is_idempotent() -> None:
    first = error_from_status(429, provider='p', message='slow down')
    second = error_from_status(429, provider='p', message='slow down')
    assert first.record == second.record


def test_429_without_retry_after() -> None:
    err = error_from_status(429, provider='openai')
    assert isinstance(err, RateLimitExceededError)
    assert err.record.retryable is True
    assert err.record.retry_after_seconds is None


def test_429_quota_and_retry_after() -> None:
    quota = error_from_status(429, quota_exceeded=True, provider_code='insufficient_quota')
    assert isinstance(quota, QuotaExceededError)
    assert quota.retryable is False
    assert quota.record.provider_code == 'insufficient_quota'

    limited = error_from_status(429, retry_after_seconds=2.5)
    assert limited.record.retry_after_seconds == 2.5  # noqa: PLR2004


def test_categories() -> None:
    assert ErrorKind.invalid_request.category is ErrorCategory.client
    assert ErrorKind.rate_limited.category is ErrorCategory.provider
    assert ErrorKind.streaming_error.category is ErrorCategory.response
    assert ErrorKind.resource_exhausted.category is ErrorCategory.system
    assert all(isinstance(kind.category, ErrorCategory) for kind in ErrorKind)


def test_defaults_and_overrides() -> None:
    assert ServerError('x').retryable is True
    assert InvalidRequestError('x').retryable is False
    assert StreamingError('x', retryable=True).retryable is True
    assert LLMUnifyError().record.message == 'LLMUnifyError'


def test_from_record_rebuilds_subclass() -> None:
    record = ErrorRecord(kind=ErrorKind.authentication_error, message='bad key', provider='openai', http_status=401)
    err = LLMUnifyError.from_record(record)
    assert isinstance(err, AuthenticationError)
    assert err.record is record
    assert str(err) == 'bad key'


def test_kind_follows_the_record() -> None:
    assert ServerError('x').kind is ErrorKind.server_error
    assert LLMUnifyError().kind is ErrorKind.internal_error
    record = ErrorRecord(kind=ErrorKind.rate_limited, message='slow down')
    err = LLMUnifyError('wrapped')
    err.record = record
    assert err.kind is ErrorKind.rate_limited
    assert type(err).default_kind is ErrorKind.internal_error


def test_to_json_and_summary() -> None:
    err = RateLimitExceededError('busy', provider='openai', http_status=429, retry_after_seconds=3)
    body = err.to_json()['error']
    assert body['type'] == 'RateLimitExceededError'
    assert body['kind'] == 'rate_limited'
    assert body['retryable'] is True
    assert 'request_id' not in body
    assert err.record.summary() == 'busy | Provider: openai | HTTP 429 | Recoverable | Retry after 3s'
    assert RateLimitExceededError.http_status == 429  # noqa: PLR2004


def test_parse_retry_after() -> None:
    assert parse_retry_after(None) is None
    assert parse_retry_after('  ') is None
    assert parse_retry_after('7') == 7.0  # noqa: PLR2004
    assert parse_retry_after('-3') == 0.0
    assert parse_retry_after('soon') is None
    future = format_datetime(datetime.now(UTC) + timedelta(seconds=30), usegmt=True)
    assert 20 < parse_retry_after(future) <= 30  # noqa: PLR2004


class _StatusCarrier(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f'status {status_code}')
        self.status_code = status_code


def test_classify_exception() -> None:
    own = ServerError('x')
    assert classify_exception(own) is own
    assert isinstance(classify_exception(TimeoutError('t'), 'p'), GenerationTimeoutError)
    assert isinstance(classify_exception(ConnectionResetError('r'), 'p'), ProviderConnectionError)
    assert isinstance(classify_exception(_StatusCarrier(401)), AuthenticationError)
    assert isinstance(classify_exception(OSError('disk')), ProviderConnectionError)

    other = classify_exception(RuntimeError('boom'), 'p')
    assert isinstance(other, ProviderError)
    assert other.retryable is False
    assert other.provider == 'p'
