"""
Streaming execution (SSE).

Runs a workflow in a background coordinator task and turns its callbacks
into Server-Sent Events, yielded in the order they occur:

- {"event": "workflow_start", "scope": ..., "total_nodes": N, "selected_node_ids": [...]}
- {"event": "node_status", "node_id": ..., "status": "idle|running|success|failed"}
- {"event": "node_result", "nodeId": ..., "output": ..., "timestamp": ..., "error": ...}
- {"event": "node_error", "node_id": ..., "error": ...}
- {"event": "run_update", "run": {...}}
- {"event": "workflow_complete", "run": {...}}
- {"event": "workflow_error", "error": ...}
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional, Sequence

from nodeflow.models.workflow import BaseNode, Edge, NodeResult, WorkflowRun
from nodeflow.services.errors import CycleError
from nodeflow.services.scheduler import ExecutionCallbacks, RunContext, run_workflow
from nodeflow.services.selective import run_selected

logger = logging.getLogger(__name__)

# Coordinators still finishing after their client disconnected
_running: set[asyncio.Task] = set()


def _run_payload(run: WorkflowRun) -> dict[str, Any]:
    return run.model_dump(mode="json", by_alias=True)


def format_sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


async def execute_workflow_streaming(
    nodes: Sequence[BaseNode],
    edges: Sequence[Edge],
    *,
    selected_node_ids: Optional[list[str]] = None,
    **run_kwargs: Any,
) -> AsyncIterator[str]:
    """
    Execute a graph (or the selected part of it) and yield SSE lines.

    Extra keyword arguments (services, store, workflow_id, context) go to
    the scheduler.
    """
    context: RunContext = run_kwargs.get("context") or RunContext()
    run_kwargs["context"] = context

    # Event queue for SSE - decouples execution from streaming
    event_queue: asyncio.Queue = asyncio.Queue()

    def push(event: dict[str, Any]) -> None:
        event_queue.put_nowait(event)

    def on_result(node_id: str, result: NodeResult) -> None:
        push({"event": "node_result", **result.model_dump(mode="json", by_alias=True)})

    callbacks = ExecutionCallbacks(
        set_node_status=lambda node_id, status: push(
            {"event": "node_status", "node_id": node_id, "status": status}
        ),
        set_node_result=on_result,
        on_node_error=lambda node_id, error: push(
            {"event": "node_error", "node_id": node_id, "error": error}
        ),
        on_run_update=lambda run: push({"event": "run_update", "run": _run_payload(run)}),
        on_workflow_complete=lambda run: push({"event": "workflow_complete", "run": _run_payload(run)}),
        on_workflow_error=lambda error: push({"event": "workflow_error", "error": error}),
    )

    if selected_node_ids is not None:
        selected = set(selected_node_ids)
        scoped_ids = [n.id for n in nodes if n.id in selected]
        scope = "single" if len(scoped_ids) == 1 else "selected"
        execution = lambda: run_selected(nodes, edges, selected_node_ids, callbacks, **run_kwargs)
    else:
        scoped_ids = [n.id for n in nodes]
        scope = "full"
        execution = lambda: run_workflow(nodes, edges, callbacks, **run_kwargs)

    async def coordinator():
        try:
            await execution()
        except CycleError:
            # Already reported through on_workflow_error
            pass
        except Exception as e:
            logger.exception("Coordinator error: %s", e)
            push({"event": "workflow_error", "error": f"Internal error: {type(e).__name__}: {e}"})
        finally:
            # Signal end of events
            push(None)

    yield format_sse({
        "event": "workflow_start",
        "scope": scope,
        "total_nodes": len(scoped_ids),
        "selected_node_ids": scoped_ids if scope != "full" else None,
    })

    coordinator_task = asyncio.create_task(coordinator())
    _running.add(coordinator_task)
    coordinator_task.add_done_callback(_running.discard)

    try:
        while True:
            event = await event_queue.get()
            if event is None:  # Sentinel for completion
                break
            yield format_sse(event)
    finally:
        # Client went away: stop the run and wait for it to record its outcome
        if not coordinator_task.done():
            context.cancel()
            await asyncio.shield(coordinator_task)
