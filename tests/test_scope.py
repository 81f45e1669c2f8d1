"""Tests for scope resolution."""

import pytest

from conftest import FakeCluster, active_ns, terminating_ns

from nsterm_dx.errors import NamespaceNotFound
from nsterm_dx.scope import is_valid_namespace_name, resolve_scope


@pytest.fixture
def cluster():
    return FakeCluster(namespaces=[terminating_ns("a"), active_ns("default"), terminating_ns("b")])


def test_no_name_selects_terminating(cluster):
    assert [ns.name for ns in resolve_scope(cluster)] == ["a", "b"]


def test_named_namespace_any_phase(cluster):
    assert [ns.name for ns in resolve_scope(cluster, "default")] == ["default"]


def test_missing_namespace(cluster):
    with pytest.raises(NamespaceNotFound) as excinfo:
        resolve_scope(cluster, "nope")
    assert "does not exist" in str(excinfo.value)


@pytest.mark.parametrize("name", ["Upper", "-lead", "trail-", "has_underscore", "a" * 64, "x; rm -rf /"])
def test_invalid_names_rejected(cluster, name):
    assert not is_valid_namespace_name(name)
    with pytest.raises(ValueError):
        resolve_scope(cluster, name)


@pytest.mark.parametrize("name", ["a", "kube-system", "team-42", "a" * 63])
def test_valid_names(name):
    assert is_valid_namespace_name(name)
