"""
Workflow scheduler: runs a graph with maximal parallelism.

Every node whose in-scope dependencies are all terminal is launched as its
own task; each completion decrements its dependents' remaining in-degree
and launches whatever became ready. A failed node only fails itself.
Dependents of a failed node still run and fail on their own if they cannot
resolve a required input.

Per-run state (statuses, latest results, the run record) lives on a
RunContext owned by the caller. Passing the same context to a later
selective run lets it reuse earlier results.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from nodeflow.config import max_concurrent_nodes, node_timeout_seconds
from nodeflow.models.workflow import (
    BaseNode,
    Edge,
    NodeExecutionStatus,
    NodeResult,
    RunScope,
    WorkflowRun,
)
from nodeflow.services.dag import get_execution_order
from nodeflow.services.errors import CycleError, NodeExecutionError, RemoteOperationError
from nodeflow.services.node_executor import MediaServices, default_media_services, execute_node
from nodeflow.services.run_reporter import RunReporter
from nodeflow.services.run_store import RunStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Execution cancelled"


@dataclass
class ExecutionCallbacks:
    """Live hooks for a run. All optional; exceptions raised by a hook are logged."""

    set_node_status: Optional[Callable[[str, NodeExecutionStatus], Any]] = None
    set_node_result: Optional[Callable[[str, NodeResult], Any]] = None
    on_node_error: Optional[Callable[[str, str], Any]] = None
    on_workflow_complete: Optional[Callable[[WorkflowRun], Any]] = None
    on_workflow_error: Optional[Callable[[str], Any]] = None
    on_run_update: Optional[Callable[[WorkflowRun], Any]] = None

    def emit(self, name: str, *args: Any) -> None:
        hook = getattr(self, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception as e:
            logger.exception("Callback %s failed: %s", name, e)


@dataclass
class RunContext:
    """State of one run: node statuses, latest results and the run record."""

    statuses: dict[str, NodeExecutionStatus] = field(default_factory=dict)
    results: dict[str, NodeResult] = field(default_factory=dict)
    run: Optional[WorkflowRun] = None
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def cancel(self) -> None:
        """
        Stop the run in progress, or the next one if none has started yet.
        Running nodes fail as cancelled; unstarted nodes stay idle.
        """
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


def _build_dependency_counters(
    nodes: Sequence[BaseNode],
    edges: Sequence[Edge],
) -> tuple[dict[str, int], dict[str, list[str]]]:
    """
    Remaining in-degree per node and downstream adjacency.

    Several edges between the same pair of nodes are one dependency.
    """
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}
    dependents: dict[str, list[str]] = {n.id: [] for n in nodes}
    seen_pairs: set[tuple[str, str]] = set()

    for edge in edges:
        pair = (edge.source, edge.target)
        if pair in seen_pairs:
            continue
        seen_pairs.add(pair)
        dependents[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    return in_degree, dependents


async def _execute_with_timeout(coro, timeout: Optional[float]) -> Any:
    if timeout is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError:
        raise RemoteOperationError(f"Node timed out after {timeout:g} seconds")


async def run_workflow(
    nodes: Sequence[BaseNode],
    edges: Sequence[Edge],
    callbacks: Optional[ExecutionCallbacks] = None,
    *,
    services: Optional[MediaServices] = None,
    store: Optional[RunStore] = None,
    workflow_id: Optional[str] = None,
    scope: RunScope = "full",
    selected_node_ids: Optional[list[str]] = None,
    context: Optional[RunContext] = None,
) -> WorkflowRun:
    """
    Execute a graph and return the finished run record.

    Edges with an endpoint outside ``nodes`` are ignored.

    Raises:
        CycleError: the graph is not a DAG. Raised before any node runs,
            after on_workflow_error has fired.
    """
    callbacks = callbacks or ExecutionCallbacks()
    context = context or RunContext()

    node_map = {n.id: n for n in nodes}
    edges = [e for e in edges if e.source in node_map and e.target in node_map]

    for node_id in node_map:
        context.statuses[node_id] = "idle"
        callbacks.emit("set_node_status", node_id, "idle")

    try:
        get_execution_order(nodes, edges)
    except CycleError as e:
        logger.warning("Workflow rejected: %s", e)
        callbacks.emit("on_workflow_error", str(e))
        context._cancel_event.clear()
        raise

    services = services or default_media_services()
    timeout = node_timeout_seconds()
    limit = max_concurrent_nodes()
    semaphore = asyncio.Semaphore(limit) if limit else None

    reporter = RunReporter(
        scope=scope,
        nodes=nodes,
        workflow_id=workflow_id,
        selected_node_ids=selected_node_ids,
        store=store,
        listeners=[lambda run: callbacks.emit("on_run_update", run)],
    )
    context.run = reporter.run
    await reporter.start()

    in_degree, dependents = _build_dependency_counters(nodes, edges)

    async def execute_single_node(node: BaseNode) -> None:
        """Run one node and record its outcome. Never raises for node failures."""
        if context.cancelled:
            return

        context.statuses[node.id] = "running"
        callbacks.emit("set_node_status", node.id, "running")

        output: Any = None
        error: Optional[str] = None
        try:
            await reporter.node_started(node)
            output = await _execute_with_timeout(
                execute_node(node, nodes, edges, context.results, services),
                timeout,
            )
        except asyncio.CancelledError:
            error = CANCELLED_MESSAGE
        except NodeExecutionError as e:
            error = str(e)
            logger.warning("Node %s (%s) failed: %s", node.id, node.type, error)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("Node %s failed: %s", node.id, error)

        result = NodeResult(
            node_id=node.id,
            output=output if error is None else None,
            timestamp=datetime.now(timezone.utc),
            error=error,
        )
        context.results[node.id] = result
        context.statuses[node.id] = "success" if error is None else "failed"

        callbacks.emit("set_node_result", node.id, result)
        callbacks.emit("set_node_status", node.id, context.statuses[node.id])
        if error is not None:
            callbacks.emit("on_node_error", node.id, error)

        await reporter.node_finished(node, output=output, error=error)

    async def launch(node: BaseNode) -> None:
        if semaphore is None:
            await execute_single_node(node)
            return
        async with semaphore:
            await execute_single_node(node)

    # Seed with zero in-degree nodes in document order
    ready_queue: list[str] = [nid for nid in node_map if in_degree[nid] == 0]
    pending_tasks: dict[asyncio.Task, str] = {}  # task -> node_id
    cancel_waiter = asyncio.create_task(context._cancel_event.wait())
    run_error: Optional[str] = None
    interrupted = False

    try:
        while True:
            # Launch tasks for all ready nodes
            while ready_queue and not context.cancelled:
                node_id = ready_queue.pop(0)
                task = asyncio.create_task(launch(node_map[node_id]))
                pending_tasks[task] = node_id
                logger.debug("Started execution of node %s", node_id)

            if not pending_tasks:
                break

            # Wait for at least one task to complete, or for cancellation
            done, _ = await asyncio.wait(
                [*pending_tasks.keys(), cancel_waiter],
                return_when=asyncio.FIRST_COMPLETED,
            )

            if cancel_waiter in done:
                logger.info("Run %s cancelled with %d nodes in flight", reporter.run.run_id, len(pending_tasks))
                break

            for task in done:
                node_id = pending_tasks.pop(task)
                task.result()

                # Unblock downstream nodes; a failed upstream still counts as done
                for downstream in dependents[node_id]:
                    in_degree[downstream] -= 1
                    if in_degree[downstream] == 0:
                        ready_queue.append(downstream)
                        logger.debug("Node %s now ready (unblocked by %s)", downstream, node_id)

    except asyncio.CancelledError:
        # The coordinator itself was cancelled: finish like context.cancel(), then re-raise
        logger.info("Run %s interrupted with %d nodes in flight", reporter.run.run_id, len(pending_tasks))
        interrupted = True

    except Exception as e:
        logger.exception("Coordinator error: %s", e)
        run_error = f"Internal error: {type(e).__name__}: {e}"

    finally:
        cancel_waiter.cancel()
        if pending_tasks:
            for task in pending_tasks:
                task.cancel()
            await asyncio.gather(*pending_tasks.keys(), return_exceptions=True)

    run = await reporter.complete(error=run_error)
    # A cancel stops one run; later runs on this context start clean
    context._cancel_event.clear()
    if run_error is not None:
        callbacks.emit("on_workflow_error", run_error)
    else:
        callbacks.emit("on_workflow_complete", run)

    if interrupted:
        raise asyncio.CancelledError()
    return run
