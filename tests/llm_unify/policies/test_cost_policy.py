from __future__ import annotations

import logging

import pytest

from llm_unify.adapters.mock_adapter import MockAdapter
from llm_unify.core.exceptions import ServerError
from llm_unify.core.types import Usage
from llm_unify.dispatch.dispatcher import CompletionDispatcher
from llm_unify.policies.cost import CostReport, ModelRate, compute_cost, lookup_rate, with_cost_tracking
from llm_unify.registry.provider_registry import AdapterRegistry

_HI = {'messages': [{'role': 'user', 'content': 'hi'}]}
_RATES = {'m': ModelRate(input_rate=0.01, output_rate=0.03)}


@pytest.fixture
def adapter() -> MockAdapter:
    return MockAdapter()


@pytest.fixture
def dispatcher(adapter: MockAdapter) -> CompletionDispatcher:
    return CompletionDispatcher(AdapterRegistry({'mock': adapter}))


def test_compute_cost() -> None:
    rate = ModelRate(input_rate=2.0, output_rate=3.0)
    assert compute_cost(Usage(prompt_tokens=5, completion_tokens=7), rate) == 31.0  # noqa: PLR2004
    assert compute_cost(Usage(prompt_tokens=5), rate) is None


def test_lookup_prefers_provider_qualified_key() -> None:
    special = ModelRate(input_rate=1.0, output_rate=1.0)
    rates = {**_RATES, 'mock/m': special}
    assert lookup_rate(rates, 'mock', 'm') is special
    assert lookup_rate(rates, 'other', 'm') is _RATES['m']
    assert lookup_rate(rates, 'other', 'unknown') is None


def test_blocking_call_is_reported_once(dispatcher: CompletionDispatcher, adapter: MockAdapter) -> None:
    adapter.queue_response('ok', usage={'prompt_tokens': 5, 'completion_tokens': 7})
    reports: list[CostReport] = []
    call = with_cost_tracking(_RATES, reports.append)(dispatcher.complete)

    response = call('mock', 'm', _HI)
    assert response.content == 'ok'
    assert len(reports) == 1
    assert reports[0].cost == pytest.approx(5 * 0.01 + 7 * 0.03)
    assert reports[0].usage.total_tokens == 12  # noqa: PLR2004
    assert reports[0].response_id == response.id


@pytest.mark.parametrize(
    ('model', 'usage'),
    [
        ('unknown', {'prompt_tokens': 5, 'completion_tokens': 7}),
        ('m', None),
        ('m', {'prompt_tokens': 5}),
    ],
)
def test_nothing_reported_without_rate_or_counts(
    dispatcher: CompletionDispatcher, adapter: MockAdapter, model: str, usage: dict[str, int] | None
) -> None:
    adapter.queue_response('ok', usage=usage)
    reports: list[CostReport] = []
    with_cost_tracking(_RATES, reports.append)(dispatcher.complete)('mock', model, _HI)
    assert reports == []


def test_failed_call_is_not_reported(dispatcher: CompletionDispatcher, adapter: MockAdapter) -> None:
    adapter.queue_error(ServerError('down'))
    reports: list[CostReport] = []
    with pytest.raises(ServerError):
        with_cost_tracking(_RATES, reports.append)(dispatcher.complete)('mock', 'm', _HI)
    assert reports == []


def test_sink_failure_does_not_affect_result(
    dispatcher: CompletionDispatcher, adapter: MockAdapter, caplog: pytest.LogCaptureFixture
) -> None:
    def sink(_: CostReport) -> None:
        raise RuntimeError('ledger offline')

    adapter.queue_response('still fine', usage={'prompt_tokens': 1, 'completion_tokens': 1})
    with caplog.at_level(logging.ERROR, logger='llm_unify.policies.cost'):
        response = with_cost_tracking(_RATES, sink)(dispatcher.complete)('mock', 'm', _HI)
    assert response.content == 'still fine'
    assert 'cost sink failed for mock/m' in caplog.text


def test_completed_stream_is_reported_after_it_ends(dispatcher: CompletionDispatcher, adapter: MockAdapter) -> None:
    adapter.queue_text_stream('a', 'b', usage={'prompt_tokens': 5, 'completion_tokens': 7})
    reports: list[CostReport] = []
    stream = with_cost_tracking(_RATES, reports.append)(dispatcher.complete)('mock', 'm', {**_HI, 'stream': True})

    assert stream.collect().content == 'ab'
    assert stream.wait(2.0)
    assert len(reports) == 1
    assert reports[0].cost == pytest.approx(0.26)


def test_errored_stream_is_not_reported(dispatcher: CompletionDispatcher, adapter: MockAdapter) -> None:
    adapter.queue_stream([{'content': 'a', 'usage': {'prompt_tokens': 5, 'completion_tokens': 1}}, ServerError('x')])
    reports: list[CostReport] = []
    stream = with_cost_tracking(_RATES, reports.append)(dispatcher.complete)('mock', 'm', {**_HI, 'stream': True})

    assert list(stream)[-1].is_error
    assert stream.wait(2.0)
    assert reports == []
