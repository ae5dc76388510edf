import pytest

from aslan_crm.automation.dependency_graph import DependencyGraph, DependencyNode
from aslan_crm.automation.exceptions import DependencyCycleError, InvalidDependencyError

pytestmark = [pytest.mark.unit, pytest.mark.usefixtures("anyio_backend")]


def _graph(*nodes):
    return DependencyGraph(DependencyNode(*n) for n in nodes)


def test_children_are_built_from_parent_pointers():
    graph = _graph((1, "cutting", None), (2, "cutting", 1), (3, "cutting", 1), (4, "cutting", 2))

    assert sorted(graph.children(1)) == [2, 3]
    assert graph.children(2) == [4]
    assert graph.children(4) == []
    assert graph.parent(4) == 2


def test_valid_tree_has_no_problems():
    graph = _graph((1, "cutting", None), (2, "cutting", 1), (3, "edging", None))

    assert graph.find_cycle() is None
    assert graph.problems() == []
    graph.validate()


def test_cycle_is_reported_as_path():
    graph = _graph((1, "cutting", 3), (2, "cutting", 1), (3, "cutting", 2))

    cycle = graph.find_cycle()
    assert cycle is not None
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {1, 2, 3}

    with pytest.raises(DependencyCycleError):
        graph.validate()


def test_cross_stage_and_missing_parents_are_invalid_edges():
    graph = _graph((1, "cutting", None), (2, "edging", 1), (3, "cutting", 99))

    problems = graph.invalid_edges()
    assert len(problems) == 2
    assert not graph.is_valid_edge(2)
    assert not graph.is_valid_edge(3)
    assert graph.is_valid_edge(1)

    with pytest.raises(InvalidDependencyError):
        graph.validate()


def test_validate_node_rejects_closing_a_loop():
    graph = _graph((1, "cutting", None), (2, "cutting", 1))

    # 1 -> 2 would close 1 <- 2 into a loop
    candidate = graph.with_node(DependencyNode(1, "cutting", 2))
    with pytest.raises(DependencyCycleError) as exc:
        candidate.validate_node(1)
    assert exc.value.cycle == [1, 2, 1]

    # the original graph is untouched
    assert graph.parent(1) is None


def test_validate_node_ignores_problems_elsewhere():
    graph = _graph((1, "cutting", None), (2, "cutting", 1), (5, "edging", 1))

    graph.validate_node(2)
    with pytest.raises(InvalidDependencyError):
        graph.validate_node(5)


def test_self_dependency_is_rejected():
    graph = _graph((1, "cutting", 1))

    with pytest.raises(InvalidDependencyError):
        graph.validate_node(1)
    assert graph.problems()
