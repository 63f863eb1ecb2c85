from __future__ import annotations

import logging
from pathlib import Path

import pytest

from llm_unify.core.exceptions import InvalidConfigError
from llm_unify.core.log import ROOT_LOGGER, configure_logging
from llm_unify.core.settings import ENV_VARS, Settings, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so values written by load_dotenv are undone after each test
    for var in ENV_VARS:
        monkeypatch.setenv(var, '')
        monkeypatch.delenv(var)


def test_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / 'missing.env')
    assert settings == Settings()
    assert settings.openai_api_key is None
    assert settings.ollama_api_base == 'http://localhost:11434'
    assert settings.stream_buffer_size == 64  # noqa: PLR2004


def test_env_and_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / '.env'
    env_file.write_text('OPENAI_API_KEY=sk-file\nLLM_UNIFY_REQUEST_TIMEOUT=12.5\nLLM_UNIFY_LOG_LEVEL=warn\n')
    monkeypatch.setenv('OPENAI_API_KEY', 'sk-env')
    settings = load_settings(env_file)
    assert settings.openai_api_key.get_secret_value() == 'sk-env'
    assert settings.request_timeout_seconds == 12.5  # noqa: PLR2004
    assert settings.log_level == 'WARNING'


def test_invalid_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('LLM_UNIFY_STREAM_BUFFER_SIZE', '0')
    with pytest.raises(InvalidConfigError):
        load_settings(tmp_path / 'missing.env')
    monkeypatch.setenv('LLM_UNIFY_STREAM_BUFFER_SIZE', '8')
    monkeypatch.setenv('LLM_UNIFY_LOG_LEVEL', 'loud')
    with pytest.raises(InvalidConfigError):
        load_settings(tmp_path / 'missing.env')


def test_configure_logging_is_idempotent() -> None:
    logger = configure_logging('debug')
    count = len(logger.handlers)
    assert configure_logging(logging.WARNING) is logger
    assert len(logger.handlers) == count
    assert logger.name == ROOT_LOGGER
    assert logger.level == logging.WARNING
