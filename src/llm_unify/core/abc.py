"""core.abc

Abstract base class that *all* provider adapters must implement.

Design goals
============
1. **Provider-agnostic public API** - callers interact exclusively via the
    dispatcher with domain models (`CompletionRequest`, `CompletionResponse`,
    `StreamChunk`). They never touch provider-specific payloads.
2. **Split pipeline** - an adapter is a set of small steps
    (`transform` → `execute` → `normalize`, or `transform` →
    `execute_streaming` → `parse_unit` → `normalize_chunk`) so that the
    dispatcher, not the adapter, owns validation, streaming and error
    classification.
3. **No implicit retry** - adapters perform exactly one backend call per
    invocation; retrying is the job of an explicit policy wrapper.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from llm_unify.core.wire import WireFormat, parse_event

if TYPE_CHECKING:
    from collections.abc import Iterator

    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import (
        Capabilities,
        CompletionRequest,
        CompletionResponse,
        ProviderConfig,
        StreamChunk,
    )
    from llm_unify.core.wire import _Done

WireRequest = dict[str, Any]
WireResponse = dict[str, Any]


class AbstractProviderAdapter(ABC):
    """Provider-independent adapter interface."""

    #: Registry key and the ``provider`` reported in error records.
    provider_name: ClassVar[str] = 'abstract'
    #: Incremental wire format produced by `execute_streaming`.
    wire_format: ClassVar[WireFormat] = WireFormat.SSE

    # ------------------------------------------------------------------
    # Methods to implement in concrete adapters
    # ------------------------------------------------------------------

    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Static feature flags used by the dispatcher for validation."""

    @abstractmethod
    def transform(self, request: CompletionRequest) -> WireRequest:
        """Build the backend payload. Pure; raises `InvalidRequestError` on unsupported fields."""

    @abstractmethod
    def execute(self, wire_request: WireRequest, config: ProviderConfig | None = None) -> WireResponse:
        """Perform the **blocking** backend call.

        Non-2xx responses must be raised as taxonomy errors (see
        `llm_unify.core.exceptions.error_from_status`), never as raw
        transport errors.
        """

    @abstractmethod
    def execute_streaming(
        self,
        wire_request: WireRequest,
        config: ProviderConfig | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Iterator[bytes]:
        """Open the backend stream and yield raw bytes as they arrive.

        Implementations are expected to be generators so that closing the
        iterator releases the underlying connection. When *cancel* is given,
        the live connection must be registered with `cancel.on_cancel` so that
        cancelling interrupts a read blocked on a stalled backend.
        """

    @abstractmethod
    def normalize(self, wire_response: WireResponse) -> CompletionResponse:
        """Convert a blocking backend response into a `CompletionResponse`."""

    @abstractmethod
    def normalize_chunk(self, unit: dict[str, Any]) -> StreamChunk | None:
        """Convert one parsed stream unit; ``None`` means nothing to emit.

        May raise an `LLMUnifyError` when the unit is an in-band error event.
        """

    # ------------------------------------------------------------------
    # Overridable hooks with sensible defaults
    # ------------------------------------------------------------------

    def parse_unit(self, text: str) -> dict[str, Any] | _Done | None:
        """Parse one framed unit according to `wire_format`."""
        return parse_event(text, self.wire_format)

    # ------------------------------------------------------------------
    # Helper - string representation
    # ------------------------------------------------------------------

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return f'<{self.__class__.__name__} provider={self.provider_name!r}>'
