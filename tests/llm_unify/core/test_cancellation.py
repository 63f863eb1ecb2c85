from __future__ import annotations

import pytest

from llm_unify.core.cancellation import CancellationToken
from llm_unify.core.exceptions import RequestCancelledError


def test_cancel_is_idempotent_and_keeps_first_reason() -> None:
    token = CancellationToken()
    assert not token.cancelled
    token.cancel('first')
    token.cancel('second')
    assert token.cancelled
    assert token.reason == 'first'
    assert token.wait(0)


def test_cascade_to_children_only() -> None:
    parent = CancellationToken()
    child = parent.child()
    grandchild = child.child()
    sibling = parent.child()

    child.cancel('child only')
    assert grandchild.cancelled
    assert not parent.cancelled
    assert not sibling.cancelled

    parent.cancel('all')
    assert sibling.cancelled


def test_child_of_cancelled_parent_starts_cancelled() -> None:
    parent = CancellationToken()
    parent.cancel('gone')
    child = parent.child()
    assert child.cancelled
    assert child.reason == 'gone'


def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel('stop')
    with pytest.raises(RequestCancelledError, match='stop'):
        token.raise_if_cancelled()


def test_on_cancel_runs_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.on_cancel(lambda: calls.append('closed'))
    assert calls == []
    token.cancel('stop')
    token.cancel('again')
    assert calls == ['closed']


def test_on_cancel_of_cancelled_token_runs_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []
    token.on_cancel(lambda: calls.append('closed'))
    assert calls == ['closed']


def test_unregistered_callback_does_not_run() -> None:
    token = CancellationToken()
    calls: list[str] = []
    unregister = token.on_cancel(lambda: calls.append('closed'))
    unregister()
    token.cancel()
    assert calls == []


def test_parent_cancel_reaches_child_callbacks() -> None:
    parent = CancellationToken()
    child = parent.child()
    calls: list[str] = []
    child.on_cancel(lambda: calls.append('child'))
    parent.cancel('caller gave up')
    assert calls == ['child']


def test_failing_callback_does_not_stop_the_others() -> None:
    token = CancellationToken()
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError('boom')

    token.on_cancel(broken)
    token.on_cancel(lambda: calls.append('second'))
    token.cancel()
    assert calls == ['second']
    assert token.cancelled
