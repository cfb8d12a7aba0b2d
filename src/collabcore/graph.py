from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from .errors import ValidationError


class GraphError(ValidationError):
    """Raised when phase dependencies form a cycle or name unknown phases."""


def topological_sort(nodes: list[str], edges: Iterable[tuple[str, str]]) -> list[str]:
    """Order *nodes* so every ``(parent, child)`` edge points forward.

    Nodes without mutual constraints keep their original relative order, so
    the result is stable across runs.

    Raises GraphError if an edge references an unknown node or on cycles;
    the message names the nodes left on the cycle.
    """
    node_set = set(nodes)
    if len(node_set) != len(nodes):
        raise GraphError(f"Duplicate nodes: {sorted(n for n in node_set if nodes.count(n) > 1)}")
    children: dict[str, list[str]] = {node: [] for node in nodes}
    in_degree: dict[str, int] = {node: 0 for node in nodes}

    for parent, child in edges:
        if parent not in node_set:
            raise GraphError(f"{child!r} depends on unknown node {parent!r}")
        if child not in node_set:
            raise GraphError(f"Edge references unknown node {child!r}")
        children[parent].append(child)
        in_degree[child] += 1

    position = {node: i for i, node in enumerate(nodes)}
    ready: deque[str] = deque(node for node in nodes if in_degree[node] == 0)
    ordered: list[str] = []

    while ready:
        node = ready.popleft()
        ordered.append(node)
        released = []
        for child in children[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                released.append(child)
        # Merge newly released nodes back in original order.
        ready = deque(sorted([*ready, *released], key=position.__getitem__))

    if len(ordered) != len(nodes):
        stuck = [node for node in nodes if in_degree[node] > 0]
        raise GraphError(f"Cyclic dependency between {stuck}")

    return ordered
