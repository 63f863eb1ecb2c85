from __future__ import annotations

import pytest
from pydantic import ValidationError

from llm_unify.core.exceptions import ErrorKind, ErrorRecord
from llm_unify.core.types import (
    Choice,
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    Message,
    ProviderConfig,
    Role,
    StreamChunk,
    Usage,
)


def test_request_requires_messages_and_is_frozen() -> None:
    with pytest.raises(ValidationError):
        CompletionRequest(messages=())
    req = CompletionRequest(model='m', messages=[Message(role=Role.user, content='hi')])
    assert isinstance(req.messages, tuple)
    with pytest.raises(ValidationError):
        req.model = 'other'  # type: ignore[misc]


def test_request_extra_params() -> None:
    req = CompletionRequest.model_validate(
        {'messages': [{'role': 'user', 'content': 'hi'}], 'seed': 7, 'presence_penalty': 0.5}
    )
    assert req.extra_params == {'seed': 7, 'presence_penalty': 0.5}


def test_request_bounds() -> None:
    with pytest.raises(ValidationError):
        CompletionRequest(messages=[Message(role=Role.user)], temperature=3.0)
    with pytest.raises(ValidationError):
        CompletionRequest(messages=[Message(role=Role.user)], max_tokens=0)


def test_usage_total_is_derived() -> None:
    assert Usage(prompt_tokens=5, completion_tokens=7).total_tokens == 12  # noqa: PLR2004
    assert Usage(prompt_tokens=5, completion_tokens=7, total_tokens=99).total_tokens == 12  # noqa: PLR2004
    assert Usage(prompt_tokens=5).total_tokens is None
    assert Usage(total_tokens=10).prompt_tokens is None


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [
        ('stop', FinishReason.stop),
        ('end_turn', FinishReason.stop),
        ('MAX_TOKENS', FinishReason.length),
        ('tool_use', FinishReason.tool_calls),
        ('content_filter', FinishReason.content_filter),
        ('weird', None),
        (None, None),
    ],
)
def test_finish_reason_parse(raw: str | None, expected: FinishReason | None) -> None:
    assert FinishReason.parse(raw) is expected


def test_response_content() -> None:
    msg = Message(role=Role.assistant, content='hello')
    resp = CompletionResponse(id='r', created=0, model='m', choices=(Choice(message=msg),))
    assert resp.content == 'hello'
    assert CompletionResponse(id='r', created=0, model='m', choices=()).content == ''


def test_error_chunk() -> None:
    record = ErrorRecord(kind=ErrorKind.timeout, message='late', retryable=True)
    chunk = StreamChunk.from_error(record)
    assert chunk.is_error
    assert chunk.delta_content is None
    assert not StreamChunk(delta_content='x').is_error


def test_provider_config_hides_key() -> None:
    cfg = ProviderConfig(api_key='sk-secret', organization='org-1')
    assert cfg.api_key_value() == 'sk-secret'
    assert 'sk-secret' not in repr(cfg)
    assert cfg.model_extra == {'organization': 'org-1'}
    assert ProviderConfig().api_key_value() is None
