import pytest

from dfc.BUILDERS.dependency_resolver import StageDependencyResolver


def test_resolve_order_dependencies_first():
    resolver = StageDependencyResolver({0: [], 1: [0], 2: [], 3: [1, 2]})
    order = resolver.resolve_order(3)
    assert order == [0, 1, 2, 3]


def test_unrelated_stages_are_pruned():
    resolver = StageDependencyResolver({0: [], 1: [], 2: [0]})
    assert resolver.resolve_order(2) == [0, 2]
    assert resolver.closure(2) == {0, 2}
    assert resolver.resolve_order(1) == [1]


def test_shared_dependency_appears_once():
    resolver = StageDependencyResolver({0: [], 1: [0], 2: [0], 3: [1, 2]})
    assert resolver.resolve_order(3).count(0) == 1


def test_long_chain_does_not_recurse():
    depth = 5000
    resolver = StageDependencyResolver({i: [i - 1] if i else [] for i in range(depth)})
    assert resolver.resolve_order(depth - 1) == list(range(depth))
    assert resolver.closure(depth - 1) == set(range(depth))


def test_closure_of_stage_without_edges():
    resolver = StageDependencyResolver({1: [0]})
    assert resolver.closure(7) == {7}
    assert resolver.closure(1) == {0, 1}


def test_cycle_detected():
    resolver = StageDependencyResolver({0: [1], 1: [0]})
    with pytest.raises(ValueError, match="Circular dependency"):
        resolver.resolve_order(0)
