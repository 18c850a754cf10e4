"""
Run a user-selected subset of a workflow.

The selection induces a subgraph: selected nodes plus only the edges with
both endpoints selected. An edge crossing the selection boundary is
dropped, so a selected node fed only from outside falls back to its own
stored fields (or fails if it has none). Unselected nodes are not touched.
"""

import logging
from typing import Iterable, Optional, Sequence

from nodeflow.models.workflow import BaseNode, Edge, WorkflowRun
from nodeflow.services.scheduler import ExecutionCallbacks, run_workflow

logger = logging.getLogger(__name__)


def induced_subgraph(
    all_nodes: Sequence[BaseNode],
    all_edges: Sequence[Edge],
    selected_ids: Iterable[str],
) -> tuple[list[BaseNode], list[Edge]]:
    selected = set(selected_ids)
    nodes = [n for n in all_nodes if n.id in selected]
    edges = [e for e in all_edges if e.source in selected and e.target in selected]
    return nodes, edges


async def run_selected(
    all_nodes: Sequence[BaseNode],
    all_edges: Sequence[Edge],
    selected_ids: Iterable[str],
    callbacks: Optional[ExecutionCallbacks] = None,
    **kwargs,
) -> WorkflowRun:
    """
    Execute only the selected nodes. Scope is ``single`` for one node and
    ``selected`` otherwise. Extra keyword arguments go to run_workflow.
    """
    selected_ids = list(dict.fromkeys(selected_ids))
    nodes, edges = induced_subgraph(all_nodes, all_edges, selected_ids)

    unknown = set(selected_ids) - {n.id for n in nodes}
    if unknown:
        logger.warning("Ignoring unknown selected node ids: %s", ", ".join(sorted(unknown)))

    scope = "single" if len(nodes) == 1 else "selected"
    return await run_workflow(
        nodes,
        edges,
        callbacks,
        scope=scope,
        selected_node_ids=[n.id for n in nodes],
        **kwargs,
    )
