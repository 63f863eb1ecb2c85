"""core.model_id

Utility for validating and parsing model identifiers of the form

    "<provider>/<model_name>"

The provider slug is everything before the first ``/``; the rest is the
backend's own model name and is kept verbatim, so router-style names such as
``openrouter/openai/gpt-4o`` or tagged local models such as
``ollama/llama3:8b`` survive intact. A bare model name is attributed to the
default provider.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Regular-expression helpers
# ---------------------------------------------------------------------------

_PROVIDER_REGEX: re.Pattern[str] = re.compile(r'^[a-z0-9_-]+$', re.IGNORECASE)

DEFAULT_PROVIDER = 'openai'


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ModelId(BaseModel):
    """Value-object representing a model identifier.

    * `provider` … adapter registry key (e.g. ``openai``)
    * `model` … concrete model name (e.g. ``gpt-4o``)

    The *raw* string is preserved for logging/debugging purposes.
    """

    provider: str = Field(..., pattern=r'^[a-z0-9_-]+$', description='provider slug')
    model: str = Field(..., min_length=1, description='model name')
    raw: str = Field(..., description='original, unmodified identifier')

    model_config = {
        'frozen': True,  # hashable / usable as dict key
        'str_strip_whitespace': True,
    }
    # --------------------------- Validators ---------------------------

    @field_validator('provider', mode='before')
    @classmethod
    def _provider_to_lower(cls, v: str) -> str:
        """Force lower-case for case-insensitive matching."""
        return v.lower()

    # --------------------------- Constructors -------------------------

    @classmethod
    def parse(cls, raw: str, *, default_provider: str = DEFAULT_PROVIDER) -> ModelId:
        """Parse and validate a *raw* identifier string.

        >>> ModelId.parse("openai/gpt-4o")
        ModelId(provider='openai', model='gpt-4o', raw='openai/gpt-4o')
        """
        text = raw.strip()
        provider, sep, model = text.partition('/')
        if not sep:
            provider, model = default_provider, text
        if not _PROVIDER_REGEX.match(provider) or not model.strip():
            raise ValueError(f"Invalid ModelId format. Expected '<provider>/<model>', got: {raw}")
        return cls(provider=provider, model=model, raw=raw)

    # --------------------------- Dunder helpers -----------------------

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f'{self.provider}/{self.model}'


# Convenience alias so callers don't need to import the class explicitly
parse_model_id = ModelId.parse
