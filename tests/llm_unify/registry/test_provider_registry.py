import pytest

from llm_unify.adapters.mock_adapter import MockAdapter
from llm_unify.core.exceptions import ProviderNotFoundError
from llm_unify.core.types import Capabilities
from llm_unify.registry.provider_registry import AdapterRegistry


def test_register_and_fetch() -> None:
    adapter = MockAdapter()
    reg = AdapterRegistry({'Dummy': adapter})
    assert 'dummy' in reg.available_providers()
    assert reg.get('dummy') is adapter
    assert reg.get('DUMMY') is adapter
    assert 'Dummy' in reg
    assert len(reg) == 1


def test_register_type_validation() -> None:
    with pytest.raises(TypeError):
        AdapterRegistry({'bad': object()})  # type: ignore[dict-item]


def test_unknown_provider() -> None:
    reg = AdapterRegistry({'dummy': MockAdapter()})
    with pytest.raises(ProviderNotFoundError, match='available: dummy'):
        reg.get('no-such')


def test_capabilities_lookup() -> None:
    caps = Capabilities(streaming=True)
    reg = AdapterRegistry({'dummy': MockAdapter(capabilities=caps)})
    assert reg.capabilities('dummy') == caps


def test_mapping_is_read_only_and_extended_copies() -> None:
    first = MockAdapter()
    reg = AdapterRegistry({'a': first})
    with pytest.raises(TypeError):
        reg.mapping()['b'] = MockAdapter()  # type: ignore[index]

    second = MockAdapter()
    bigger = reg.extended('b', second)
    assert bigger.available_providers() == ['a', 'b']
    assert reg.available_providers() == ['a']
    assert bigger.get('a') is first
