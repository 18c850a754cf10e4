"""
Graph primitives for workflow execution.

Pure functions over nodes and edges: cycle detection, topological order,
and the graph's natural entry and exit nodes. Nothing here performs I/O or
mutates its inputs.
"""

from __future__ import annotations

from collections import deque
from typing import Sequence

from nodeflow.models.workflow import BaseNode, Edge
from nodeflow.services.errors import CycleError


def _build_adjacency(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> dict[str, list[str]]:
    """node -> downstream node ids, one entry per edge. Edges to unknown nodes are skipped."""
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}
    for edge in edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)
    return adjacency


def _build_reverse_adjacency(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> dict[str, list[str]]:
    """node -> upstream node ids, one entry per edge."""
    reverse: dict[str, list[str]] = {n.id: [] for n in nodes}
    for edge in edges:
        if edge.source in reverse and edge.target in reverse:
            reverse[edge.target].append(edge.source)
    return reverse


def validate_dag(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> None:
    """
    Raise CycleError if the graph has a cycle.

    Depth-first search from every unvisited node, tracking the current path.
    On a back edge the cycle is the path suffix starting at the revisited
    node, closed by repeating that node: ``["a", "b", "c", "a"]``.
    """
    adjacency = _build_adjacency(nodes, edges)
    visited: set[str] = set()

    for root in adjacency:
        if root in visited:
            continue

        path: list[str] = [root]
        on_path: set[str] = {root}
        stack = [iter(adjacency[root])]
        visited.add(root)

        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                on_path.discard(path.pop())
                continue

            if neighbor in on_path:
                cycle = path[path.index(neighbor):] + [neighbor]
                raise CycleError(
                    f"Cycle detected in workflow graph: {' -> '.join(cycle)}",
                    cycle,
                )
            if neighbor not in visited:
                visited.add(neighbor)
                path.append(neighbor)
                on_path.add(neighbor)
                stack.append(iter(adjacency[neighbor]))


def get_execution_order(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> list[BaseNode]:
    """
    Return nodes in an execution-safe (topological) order using Kahn's algorithm.

    Nodes that become ready at the same time have no defined relative order.

    Raises:
        CycleError: if the graph is not a DAG.
    """
    validate_dag(nodes, edges)

    node_map = {n.id: n for n in nodes}
    reverse = _build_reverse_adjacency(nodes, edges)
    adjacency = _build_adjacency(nodes, edges)
    in_degree = {nid: len(upstream) for nid, upstream in reverse.items()}

    queue: deque[str] = deque(nid for nid, deg in in_degree.items() if deg == 0)
    order: list[BaseNode] = []

    while queue:
        nid = queue.popleft()
        order.append(node_map[nid])
        for downstream in adjacency[nid]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                queue.append(downstream)

    if len(order) != len(node_map):
        processed = {n.id for n in order}
        stuck = [nid for nid in node_map if nid not in processed]
        raise CycleError(
            f"Cannot compute execution order: cycle detected involving nodes: {', '.join(stuck)}",
            stuck,
        )

    return order


def get_entry_nodes(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> list[BaseNode]:
    """Nodes with no incoming edges."""
    reverse = _build_reverse_adjacency(nodes, edges)
    return [n for n in nodes if not reverse[n.id]]


def get_exit_nodes(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> list[BaseNode]:
    """Nodes with no outgoing edges."""
    adjacency = _build_adjacency(nodes, edges)
    return [n for n in nodes if not adjacency[n.id]]
