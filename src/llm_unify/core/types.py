"""core.types

Shared DTOs and enums used throughout *llm_unify*.

These models live in the **core** layer so that *adapters*, *registry*,
*dispatch*, *policies* and higher application layers can depend on them
without causing circular imports. All of them are immutable value objects.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from llm_unify.core.exceptions import ErrorRecord

# ---------------------------------------------------------------------------
# Chat roles (OpenAI-style for broad compatibility)
# ---------------------------------------------------------------------------


class Role(StrEnum):
    system = 'system'
    user = 'user'
    assistant = 'assistant'
    tool = 'tool'


# ---------------------------------------------------------------------------
# Messages and tools
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    """A tool invocation produced by a backend. Arguments stay opaque JSON text."""

    id: str
    name: str
    arguments_json: str = '{}'

    model_config = ConfigDict(frozen=True)


class ToolSpec(BaseModel):
    """A function the model may call."""

    name: str = Field(..., min_length=1)
    description: str | None = None
    parameters: dict[str, Any] = Field(default_factory=lambda: {'type': 'object', 'properties': {}})

    model_config = ConfigDict(frozen=True)


class Message(BaseModel):
    """Single chat message. Conversation order is turn order."""

    role: Role
    content: str = ''
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None

    # Immutable value-object
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Request
#   - Extra fields are permitted so callers can pass provider-specific knobs
# ---------------------------------------------------------------------------


class CompletionRequest(BaseModel):
    """Provider-agnostic chat completion request."""

    model: str = ''
    messages: tuple[Message, ...] = Field(..., min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, ge=1, description='Maximum tokens in completion')
    stop: tuple[str, ...] | None = None
    stream: bool = False
    tools: tuple[ToolSpec, ...] | None = None
    tool_choice: str | dict[str, Any] | None = None

    # Allow provider-specific parameters without schema errors
    model_config = ConfigDict(frozen=True, extra='allow')

    @property
    def extra_params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class FinishReason(StrEnum):
    stop = 'stop'
    length = 'length'
    tool_calls = 'tool_calls'
    content_filter = 'content_filter'

    @classmethod
    def parse(cls, value: str | None) -> FinishReason | None:
        """Map a provider spelling (``end_turn``, ``max_tokens``, ...) to a member."""
        if not value:
            return None
        return _FINISH_ALIASES.get(value.lower())


_FINISH_ALIASES: dict[str, FinishReason] = {
    'stop': FinishReason.stop,
    'end_turn': FinishReason.stop,
    'stop_sequence': FinishReason.stop,
    'length': FinishReason.length,
    'max_tokens': FinishReason.length,
    'tool_calls': FinishReason.tool_calls,
    'function_call': FinishReason.tool_calls,
    'tool_use': FinishReason.tool_calls,
    'content_filter': FinishReason.content_filter,
    'safety': FinishReason.content_filter,
}


class Usage(BaseModel):
    """Token accounting. Unknown counts stay ``None``; they are never guessed."""

    prompt_tokens: int | None = Field(default=None, ge=0)
    completion_tokens: int | None = Field(default=None, ge=0)
    total_tokens: int | None = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='before')
    @classmethod
    def _derive_total(cls, data: Any) -> Any:
        if isinstance(data, dict):
            prompt, completion = data.get('prompt_tokens'), data.get('completion_tokens')
            if prompt is not None and completion is not None:
                data = {**data, 'total_tokens': prompt + completion}
        return data


class Choice(BaseModel):
    index: int = 0
    message: Message
    finish_reason: FinishReason | None = None

    model_config = ConfigDict(frozen=True)


class CompletionResponse(BaseModel):
    id: str
    created: int
    model: str
    choices: tuple[Choice, ...]
    usage: Usage | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def content(self) -> str:
        """Text of the first choice (empty when the backend returned none)."""
        return self.choices[0].message.content if self.choices else ''


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class PartialToolCall(BaseModel):
    """Fragment of a tool call; fragments with the same index concatenate."""

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None

    model_config = ConfigDict(frozen=True)


class StreamChunk(BaseModel):
    """One incremental unit of a streaming response.

    A chunk with ``error`` set is terminal: nothing follows it on the stream.
    """

    choice_index: int = 0
    delta_content: str | None = None
    delta_tool_calls: tuple[PartialToolCall, ...] | None = None
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    id: str | None = None
    model: str | None = None
    error: ErrorRecord | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_error(cls, record: ErrorRecord) -> StreamChunk:
        return cls(error=record)


# ---------------------------------------------------------------------------
# Adapter capabilities and per-call configuration
# ---------------------------------------------------------------------------


class Capabilities(BaseModel):
    streaming: bool = False
    tool_calling: bool = False
    embeddings: bool = False

    model_config = ConfigDict(frozen=True)


class ProviderConfig(BaseModel):
    """Credentials and transport knobs resolved for one call."""

    api_key: SecretStr | None = None
    api_base: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0.0)

    model_config = ConfigDict(frozen=True, extra='allow')

    def api_key_value(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key is not None else None


class CompletionTarget(BaseModel):
    """A resolved ``(provider, model, config)`` triple."""

    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    config: ProviderConfig | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:  # pragma: no cover - cosmetic
        return f'{self.provider}/{self.model}'
