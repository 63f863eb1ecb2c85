"""core.exceptions

Centralised error taxonomy for *llm_unify*.

Every failure, whichever backend produced it, ends up as one `LLMUnifyError`
subclass carrying an immutable `ErrorRecord`. The record is what callers
inspect programmatically (`kind`, `retryable`, `retry_after_seconds`, ...);
the exception class is how the blocking path delivers it. The streaming path
delivers the very same record as the terminal chunk of a stream.

Each error class also carries an `http_status` attribute so that upper layers
(REST API controllers, FastAPI exception handlers, etc.) can translate
exceptions to appropriate HTTP responses *without* scattering status-code
logic throughout business code.
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import StrEnum
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Mapping


# ---------------------------------------------------------------------------
# Kinds and categories
# ---------------------------------------------------------------------------


class ErrorCategory(StrEnum):
    client = 'client'
    provider = 'provider'
    response = 'response'
    system = 'system'


class ErrorKind(StrEnum):
    """Fixed set of failure kinds shared by every adapter."""

    # client / configuration
    invalid_request = 'invalid_request'
    invalid_config = 'invalid_config'
    authentication_error = 'authentication_error'
    authorization_error = 'authorization_error'
    provider_not_found = 'provider_not_found'
    model_not_found = 'model_not_found'
    unsupported_feature = 'unsupported_feature'
    quota_exceeded = 'quota_exceeded'
    # backend / network
    rate_limited = 'rate_limited'
    timeout = 'timeout'
    connection_error = 'connection_error'
    server_error = 'server_error'
    provider_error = 'provider_error'
    # response shape
    invalid_response = 'invalid_response'
    streaming_error = 'streaming_error'
    content_filtered = 'content_filtered'
    # system
    resource_exhausted = 'resource_exhausted'
    internal_error = 'internal_error'
    cancelled = 'cancelled'

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: Mapping[ErrorKind, ErrorCategory] = {
    ErrorKind.invalid_request: ErrorCategory.client,
    ErrorKind.invalid_config: ErrorCategory.client,
    ErrorKind.authentication_error: ErrorCategory.client,
    ErrorKind.authorization_error: ErrorCategory.client,
    ErrorKind.provider_not_found: ErrorCategory.client,
    ErrorKind.model_not_found: ErrorCategory.client,
    ErrorKind.unsupported_feature: ErrorCategory.client,
    ErrorKind.quota_exceeded: ErrorCategory.client,
    ErrorKind.rate_limited: ErrorCategory.provider,
    ErrorKind.timeout: ErrorCategory.provider,
    ErrorKind.connection_error: ErrorCategory.provider,
    ErrorKind.server_error: ErrorCategory.provider,
    ErrorKind.provider_error: ErrorCategory.provider,
    ErrorKind.invalid_response: ErrorCategory.response,
    ErrorKind.streaming_error: ErrorCategory.response,
    ErrorKind.content_filtered: ErrorCategory.response,
    ErrorKind.resource_exhausted: ErrorCategory.system,
    ErrorKind.internal_error: ErrorCategory.system,
    ErrorKind.cancelled: ErrorCategory.system,
}


# ---------------------------------------------------------------------------
# Error record (value object)
# ---------------------------------------------------------------------------


class ErrorRecord(BaseModel):
    """Backend-agnostic description of a single failure."""

    kind: ErrorKind
    message: str
    provider: str | None = None
    http_status: int | None = None
    provider_code: str | None = None
    retryable: bool = False
    retry_after_seconds: float | None = Field(default=None, ge=0.0)
    request_id: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    def summary(self) -> str:
        """One-line human readable rendering, e.g. for log lines."""
        parts = [self.message]
        if self.provider:
            parts.append(f'Provider: {self.provider}')
        if self.http_status is not None:
            parts.append(f'HTTP {self.http_status}')
        if self.retryable:
            parts.append('Recoverable')
        if self.retry_after_seconds is not None:
            parts.append(f'Retry after {self.retry_after_seconds:g}s')
        return ' | '.join(parts)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------


class LLMUnifyError(Exception):
    """Base class for all *llm_unify* domain errors."""

    default_kind: ClassVar[ErrorKind] = ErrorKind.internal_error
    default_retryable: ClassVar[bool] = False
    #: Default HTTP status if not overridden by subclass.
    http_status: ClassVar[HTTPStatus] = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        provider: str | None = None,
        http_status: int | None = None,
        provider_code: str | None = None,
        retryable: bool | None = None,
        retry_after_seconds: float | None = None,
        request_id: str | None = None,
    ) -> None:
        message = message or self.__class__.__name__
        super().__init__(message)
        self.record: ErrorRecord = ErrorRecord(
            kind=self.default_kind,
            message=message,
            provider=provider,
            http_status=http_status,
            provider_code=provider_code,
            retryable=self.default_retryable if retryable is None else retryable,
            retry_after_seconds=retry_after_seconds,
            request_id=request_id,
        )

    @property
    def kind(self) -> ErrorKind:
        """Kind carried by `record`; `default_kind` unless the record was replaced."""
        return self.record.kind

    @property
    def retryable(self) -> bool:
        return self.record.retryable

    @property
    def provider(self) -> str | None:
        return self.record.provider

    @classmethod
    def from_record(cls, record: ErrorRecord) -> LLMUnifyError:
        """Rebuild the exception matching *record.kind* (e.g. from a terminal chunk)."""
        error = _ERRORS_BY_KIND.get(record.kind, InternalError)(record.message)
        error.record = record
        return error

    def to_json(self) -> dict[str, dict[str, Any]]:
        """Unified error body for API layers."""
        return {'error': {'type': self.__class__.__name__, **self.record.model_dump(mode='json', exclude_none=True)}}


# ---------------------------------------------------------------------------
# Client / configuration errors
# ---------------------------------------------------------------------------


class InvalidRequestError(LLMUnifyError):
    """Request validation failed or the adapter cannot express a field."""

    default_kind = ErrorKind.invalid_request
    http_status = HTTPStatus.BAD_REQUEST


class InvalidConfigError(LLMUnifyError):
    """Configuration missing, malformed or unknown."""

    default_kind = ErrorKind.invalid_config
    http_status = HTTPStatus.BAD_REQUEST


class AuthenticationError(LLMUnifyError):
    default_kind = ErrorKind.authentication_error
    http_status = HTTPStatus.UNAUTHORIZED


class AuthorizationError(LLMUnifyError):
    default_kind = ErrorKind.authorization_error
    http_status = HTTPStatus.FORBIDDEN


class ProviderNotFoundError(LLMUnifyError):
    """Raised when the adapter registry cannot find a requested provider key."""

    default_kind = ErrorKind.provider_not_found
    http_status = HTTPStatus.NOT_IMPLEMENTED  # 501


class ModelNotFoundError(LLMUnifyError):
    """Raised when a model is unknown for a valid provider."""

    default_kind = ErrorKind.model_not_found
    http_status = HTTPStatus.NOT_FOUND


class UnsupportedFeatureError(LLMUnifyError):
    """The request needs a capability (streaming, tools, ...) the adapter lacks."""

    default_kind = ErrorKind.unsupported_feature
    http_status = HTTPStatus.NOT_IMPLEMENTED


class QuotaExceededError(LLMUnifyError):
    """Hard account quota; waiting will not help."""

    default_kind = ErrorKind.quota_exceeded
    http_status = HTTPStatus.TOO_MANY_REQUESTS


# ---------------------------------------------------------------------------
# Backend / network errors (retryable by default)
# ---------------------------------------------------------------------------


class RateLimitExceededError(LLMUnifyError):
    """Raised when provider rate limits are hit."""

    default_kind = ErrorKind.rate_limited
    default_retryable = True
    http_status = HTTPStatus.TOO_MANY_REQUESTS  # 429


class GenerationTimeoutError(LLMUnifyError):
    """Raised when a backend (or a timeout wrapper) gives up waiting."""

    default_kind = ErrorKind.timeout
    default_retryable = True
    http_status = HTTPStatus.GATEWAY_TIMEOUT  # 504


class ProviderConnectionError(LLMUnifyError):
    default_kind = ErrorKind.connection_error
    default_retryable = True
    http_status = HTTPStatus.BAD_GATEWAY


class ServerError(LLMUnifyError):
    default_kind = ErrorKind.server_error
    default_retryable = True
    http_status = HTTPStatus.BAD_GATEWAY  # 502


class ProviderError(LLMUnifyError):
    """Generic upstream provider error; retryability decided per instance."""

    default_kind = ErrorKind.provider_error
    http_status = HTTPStatus.BAD_GATEWAY


# ---------------------------------------------------------------------------
# Response-shape errors
# ---------------------------------------------------------------------------


class InvalidResponseError(LLMUnifyError):
    default_kind = ErrorKind.invalid_response
    http_status = HTTPStatus.BAD_GATEWAY


class StreamingError(LLMUnifyError):
    """Stream broke. Retryable only if nothing had been delivered yet."""

    default_kind = ErrorKind.streaming_error
    http_status = HTTPStatus.BAD_GATEWAY


class ContentFilteredError(LLMUnifyError):
    default_kind = ErrorKind.content_filtered
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY


# ---------------------------------------------------------------------------
# System errors
# ---------------------------------------------------------------------------


class ResourceExhaustedError(LLMUnifyError):
    """Local thread or buffer saturation."""

    default_kind = ErrorKind.resource_exhausted
    default_retryable = True
    http_status = HTTPStatus.SERVICE_UNAVAILABLE


class InternalError(LLMUnifyError):
    default_kind = ErrorKind.internal_error


class RequestCancelledError(LLMUnifyError):
    """The caller cancelled the call before it finished."""

    default_kind = ErrorKind.cancelled
    http_status = HTTPStatus.REQUEST_TIMEOUT


_ERRORS_BY_KIND: Mapping[ErrorKind, type[LLMUnifyError]] = {
    error_cls.default_kind: error_cls
    for error_cls in (
        InvalidRequestError,
        InvalidConfigError,
        AuthenticationError,
        AuthorizationError,
        ProviderNotFoundError,
        ModelNotFoundError,
        UnsupportedFeatureError,
        QuotaExceededError,
        RateLimitExceededError,
        GenerationTimeoutError,
        ProviderConnectionError,
        ServerError,
        ProviderError,
        InvalidResponseError,
        StreamingError,
        ContentFilteredError,
        ResourceExhaustedError,
        InternalError,
        RequestCancelledError,
    )
}


# ---------------------------------------------------------------------------
# HTTP status mapping
# ---------------------------------------------------------------------------

_SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})


def error_from_status(
    status: int,
    *,
    provider: str | None = None,
    message: str | None = None,
    provider_code: str | None = None,
    retry_after_seconds: float | None = None,
    request_id: str | None = None,
    quota_exceeded: bool = False,
) -> LLMUnifyError:
    """Map a non-2xx HTTP status to the matching error (returned, not raised).

    *quota_exceeded* is supplied by the adapter from structured backend
    metadata (an error code such as ``insufficient_quota``); it only matters
    for 429 responses.
    """
    message = message or f'HTTP {status}'
    common: dict[str, Any] = {
        'provider': provider,
        'http_status': status,
        'provider_code': provider_code,
        'request_id': request_id,
    }
    if status == HTTPStatus.BAD_REQUEST:
        return InvalidRequestError(message, **common)
    if status == HTTPStatus.UNAUTHORIZED:
        return AuthenticationError(message, **common)
    if status == HTTPStatus.FORBIDDEN:
        return AuthorizationError(message, **common)
    if status == HTTPStatus.NOT_FOUND:
        return ModelNotFoundError(message, **common)
    if status == HTTPStatus.REQUEST_TIMEOUT:
        return GenerationTimeoutError(message, **common)
    if status == HTTPStatus.TOO_MANY_REQUESTS:
        if quota_exceeded:
            return QuotaExceededError(message, **common)
        return RateLimitExceededError(message, retry_after_seconds=retry_after_seconds, **common)
    if status in _SERVER_ERROR_STATUSES:
        return ServerError(message, **common)
    return ProviderError(message, retryable=status >= 500, **common)  # noqa: PLR2004


def parse_retry_after(value: str | None) -> float | None:
    """Return the delay announced by a ``Retry-After`` header, in seconds."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        seconds = (when - datetime.now(UTC)).total_seconds()
    return max(seconds, 0.0)


def _extract_status(exc: BaseException) -> int | None:
    for attr in ('status_code', 'status'):
        val = getattr(exc, attr, None)
        if isinstance(val, int) and 100 <= val < 600:  # noqa: PLR2004
            return val
    response = getattr(exc, 'response', None)
    if response is not None:
        val = getattr(response, 'status_code', None)
        if isinstance(val, int) and 100 <= val < 600:  # noqa: PLR2004
            return val
    return None


def classify_exception(exc: BaseException, provider: str | None = None) -> LLMUnifyError:
    """Re-classify a transport-native exception into the taxonomy.

    Precedence: passthrough of our own errors, timeouts, connection/OS errors,
    HTTP status carried by the exception, then a non-retryable `ProviderError`.
    """
    if isinstance(exc, LLMUnifyError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, TimeoutError):
        return GenerationTimeoutError(message, provider=provider)
    if isinstance(exc, ConnectionError):
        return ProviderConnectionError(message, provider=provider)
    if (status := _extract_status(exc)) is not None and status >= 400:  # noqa: PLR2004
        return error_from_status(status, provider=provider, message=message)
    if isinstance(exc, OSError):
        return ProviderConnectionError(message, provider=provider)
    return ProviderError(message, provider=provider, retryable=False)
