import pytest

from collabcore.graph import GraphError, topological_sort


def test_topological_sort_follows_edges():
    assert topological_sort(["a", "b", "c"], [("c", "b"), ("b", "a")]) == ["c", "b", "a"]


def test_topological_sort_is_stable_for_independent_nodes():
    nodes = ["draft", "research", "images", "review"]
    edges = [("research", "draft"), ("draft", "review"), ("images", "review")]
    assert topological_sort(nodes, edges) == ["research", "draft", "images", "review"]
    assert topological_sort(["x", "y", "z"], []) == ["x", "y", "z"]


def test_topological_sort_detects_cycles():
    with pytest.raises(GraphError, match="Cyclic dependency"):
        topological_sort(["a", "b", "c"], [("a", "b"), ("b", "a"), ("b", "c")])


def test_topological_sort_rejects_unknown_and_duplicate_nodes():
    with pytest.raises(GraphError, match="unknown node 'ghost'"):
        topological_sort(["a"], [("ghost", "a")])
    with pytest.raises(GraphError, match="Duplicate"):
        topological_sort(["a", "a"], [])
