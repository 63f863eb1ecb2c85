"""core.settings

Process-level settings read from the environment (and an optional ``.env``
file via *python-dotenv*). Settings only seed defaults for the adapters the
factory builds; per-call credentials travel in `ProviderConfig`.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from llm_unify.core.channel import DEFAULT_CAPACITY
from llm_unify.core.exceptions import InvalidConfigError

# Environment variable -> Settings field
ENV_VARS: dict[str, str] = {
    'OPENAI_API_KEY': 'openai_api_key',
    'OPENAI_API_BASE': 'openai_api_base',
    'OLLAMA_API_BASE': 'ollama_api_base',
    'LLM_UNIFY_REQUEST_TIMEOUT': 'request_timeout_seconds',
    'LLM_UNIFY_STREAM_BUFFER_SIZE': 'stream_buffer_size',
    'LLM_UNIFY_LOG_LEVEL': 'log_level',
}

_LOG_LEVELS = frozenset({'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'})


class Settings(BaseModel):
    """Validated, immutable snapshot of the environment."""

    openai_api_key: SecretStr | None = None
    openai_api_base: str | None = None
    ollama_api_base: str = 'http://localhost:11434'
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    stream_buffer_size: int = Field(default=DEFAULT_CAPACITY, ge=1)
    log_level: str = 'INFO'

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @field_validator('log_level', mode='before')
    @classmethod
    def _normalise_level(cls, v: str) -> str:
        level = str(v).upper()
        if level == 'WARN':
            level = 'WARNING'
        if level not in _LOG_LEVELS:
            raise ValueError(f'unknown log level: {v}')
        return level


def load_settings(env_file: str | os.PathLike[str] | None = None) -> Settings:
    """Build `Settings` from ``os.environ`` after loading *env_file* (or ``.env``).

    Variables already present in the environment win over the file.

    Raises
    ------
    InvalidConfigError
        If a variable holds a value that fails validation.

    """
    load_dotenv(env_file)
    values = {field: os.environ[var] for var, field in ENV_VARS.items() if os.environ.get(var)}
    try:
        return Settings(**values)
    except ValidationError as exc:
        raise InvalidConfigError(f'Invalid environment configuration: {exc}') from exc
