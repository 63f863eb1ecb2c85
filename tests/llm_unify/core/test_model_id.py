from __future__ import annotations

import pytest

from llm_unify.core.model_id import ModelId, parse_model_id


def test_valid_parse_and_str() -> None:
    mid: ModelId = ModelId.parse('OpenAI/GPT-4o')
    assert mid.provider == 'openai'
    assert mid.model == 'GPT-4o'
    assert mid.raw == 'OpenAI/GPT-4o'
    assert str(mid) == 'openai/GPT-4o'


def test_model_keeps_everything_after_first_slash() -> None:
    mid = ModelId.parse('openrouter/openai/gpt-4')
    assert mid.provider == 'openrouter'
    assert mid.model == 'openai/gpt-4'
    assert ModelId.parse('ollama/llama3:8b').model == 'llama3:8b'


def test_bare_model_uses_default_provider() -> None:
    assert ModelId.parse('gpt-4o-mini').provider == 'openai'
    assert ModelId.parse('llama3', default_provider='ollama').provider == 'ollama'


@pytest.mark.parametrize('bad_id', ['', '/', 'openai/', 'bad provider/x', '/gpt-4o'])
def test_invalid_parse(bad_id: str) -> None:
    with pytest.raises(ValueError):  # noqa: PT011
        ModelId.parse(bad_id)


def test_function_alias() -> None:
    assert isinstance(parse_model_id('anthropic/claude-3-5-sonnet'), ModelId)
