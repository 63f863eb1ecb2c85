"""policies.cost

Cost accounting wrapper.

On success, and only when the response carries both prompt and completion
token counts, the wrapper prices the call with a caller-supplied rate table
and hands a `CostReport` to a caller-supplied sink. Streams are priced once,
when they complete cleanly, from the last usage they reported. The sink can
never affect the result: its exceptions are logged and dropped.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from llm_unify.core.types import CompletionResponse, Usage
from llm_unify.dispatch.streaming import CompletionStream, StreamState

if TYPE_CHECKING:
    from llm_unify.core.cancellation import CancellationToken
    from llm_unify.core.types import ProviderConfig
    from llm_unify.dispatch.dispatcher import CompletionCall, CompletionResult, RequestLike

logger = logging.getLogger(__name__)


class ModelRate(BaseModel):
    """Price per token (any currency) for one model."""

    input_rate: float = Field(..., ge=0.0)
    output_rate: float = Field(..., ge=0.0)

    model_config = ConfigDict(frozen=True)


class CostReport(BaseModel):
    provider: str
    model: str
    cost: float
    usage: Usage
    response_id: str | None = None

    model_config = ConfigDict(frozen=True)


# Keys are ``"provider/model"`` or a bare model name
RateTable = Mapping[str, ModelRate]
CostSink = Callable[[CostReport], None]


def compute_cost(usage: Usage, rate: ModelRate) -> float | None:
    """``prompt * input_rate + completion * output_rate``; ``None`` if counts are missing."""
    if usage.prompt_tokens is None or usage.completion_tokens is None:
        return None
    return usage.prompt_tokens * rate.input_rate + usage.completion_tokens * rate.output_rate


def lookup_rate(rates: RateTable, provider: str, model: str) -> ModelRate | None:
    return rates.get(f'{provider}/{model}') or rates.get(model)


def with_cost_tracking(rates: RateTable, sink: CostSink) -> Callable[[CompletionCall], CompletionCall]:
    """Report the cost of every successful call to *sink*."""

    def report(provider: str, model: str, usage: Usage | None, response_id: str | None) -> None:
        if usage is None:
            logger.debug('no usage reported by %s/%s; cost not tracked', provider, model)
            return
        rate = lookup_rate(rates, provider, model)
        if rate is None:
            logger.debug('no rate known for %s/%s; cost not tracked', provider, model)
            return
        cost = compute_cost(usage, rate)
        if cost is None:
            logger.debug('incomplete usage from %s/%s; cost not tracked', provider, model)
            return
        try:
            sink(CostReport(provider=provider, model=model, cost=cost, usage=usage, response_id=response_id))
        except Exception:
            logger.exception('cost sink failed for %s/%s', provider, model)

    def decorator(call: CompletionCall) -> CompletionCall:
        @functools.wraps(call)
        def wrapper(
            provider: str,
            model: str,
            request: RequestLike,
            config: ProviderConfig | None = None,
            *,
            cancel: CancellationToken | None = None,
        ) -> CompletionResult:
            result = call(provider, model, request, config, cancel=cancel)
            if isinstance(result, CompletionResponse):
                report(provider, model, result.usage, result.id)
            elif isinstance(result, CompletionStream):

                def on_done(stream: CompletionStream) -> None:
                    if stream.state is StreamState.completed:
                        report(provider, model, stream.usage, None)

                result.add_done_callback(on_done)
            return result

        return wrapper

    return decorator
