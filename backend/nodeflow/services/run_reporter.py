"""
Run telemetry: builds the WorkflowRun record as a run progresses and
forwards it to the record store and to live listeners.

Persistence is best effort. A store failure is logged and the run carries
on; after a failed create_run the reporter stops calling the store for that
run. Runs of unsaved graphs (no workflow_id) go to listeners only.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from nodeflow.models.workflow import BaseNode, NodeExecutionResult, RunScope, RunStatus, WorkflowRun
from nodeflow.services.run_store import RunStore

logger = logging.getLogger(__name__)

RunListener = Callable[[WorkflowRun], Any]


def derive_run_status(successful: int, failed: int) -> RunStatus:
    """Final status from node counts. An empty run is a success."""
    if failed == 0:
        return "success"
    if successful == 0:
        return "failed"
    return "partial"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class RunReporter:
    def __init__(
        self,
        *,
        scope: RunScope,
        nodes: Sequence[BaseNode],
        workflow_id: Optional[str] = None,
        selected_node_ids: Optional[list[str]] = None,
        store: Optional[RunStore] = None,
        listeners: Optional[list[RunListener]] = None,
    ):
        self.store = store
        self.listeners: list[RunListener] = list(listeners or [])
        self.run = WorkflowRun(
            run_id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            scope=scope,
            status="running",
            started_at=_now(),
            total_nodes=len(nodes),
            selected_node_ids=selected_node_ids,
        )
        self._entries: dict[str, NodeExecutionResult] = {}
        self._persist = store is not None and workflow_id is not None

    def _notify(self) -> None:
        for listener in self.listeners:
            try:
                listener(self.run)
            except Exception as e:
                logger.exception("Run listener failed for run %s: %s", self.run.run_id, e)

    async def _store_call(self, method: str, *args, **kwargs) -> Any:
        """Call a store method off the event loop. Returns None on failure."""
        if not self._persist:
            return None
        try:
            return await asyncio.to_thread(getattr(self.store, method), *args, **kwargs)
        except Exception as e:
            logger.exception("Failed to %s for run %s: %s", method, self.run.run_id, e)
            return None

    async def start(self) -> WorkflowRun:
        run = self.run
        if self._persist:
            run_id = await self._store_call(
                "create_run",
                run.workflow_id,
                run.total_nodes,
                run.scope,
                run.selected_node_ids,
            )
            if run_id:
                run.run_id = str(run_id)
            else:
                self._persist = False

        logger.info(
            "Run %s started: scope=%s, %d nodes, workflow=%s",
            run.run_id, run.scope, run.total_nodes, run.workflow_id,
        )
        self._notify()
        return run

    def _entry_for(self, node: BaseNode) -> NodeExecutionResult:
        entry = self._entries.get(node.id)
        if entry is None:
            entry = NodeExecutionResult(
                node_id=node.id,
                node_type=node.type,
                node_name=node.label or node.type,
                status="running",
                started_at=_now(),
            )
            self._entries[node.id] = entry
            self.run.node_results.append(entry)
        return entry

    async def node_started(self, node: BaseNode) -> NodeExecutionResult:
        entry = self._entry_for(node)
        entry.status = "running"
        entry.started_at = _now()
        entry.completed_at = None
        entry.duration_ms = None
        entry.output = None
        entry.error = None
        self._notify()

        await self._store_call(
            "update_node_execution",
            self.run.run_id,
            node.id,
            entry.node_type,
            entry.node_name,
            "running",
        )
        return entry

    async def node_finished(
        self,
        node: BaseNode,
        output: Any = None,
        error: Optional[str] = None,
    ) -> NodeExecutionResult:
        entry = self._entry_for(node)
        entry.completed_at = _now()
        entry.duration_ms = _elapsed_ms(entry.started_at, entry.completed_at)
        if error is None:
            entry.status = "success"
            entry.output = output
        else:
            entry.status = "failed"
            entry.error = error

        if error is None:
            self.run.successful_nodes += 1
        else:
            self.run.failed_nodes += 1
        self._notify()

        await self._store_call(
            "update_node_execution",
            self.run.run_id,
            node.id,
            entry.node_type,
            entry.node_name,
            entry.status,
            output=entry.output,
            error=entry.error,
            duration_ms=entry.duration_ms,
        )
        return entry

    async def complete(self, error: Optional[str] = None) -> WorkflowRun:
        """
        Finalize the run. ``error`` marks a run-level failure (internal
        coordinator error) and forces the status to failed.
        """
        run = self.run
        run.successful_nodes = sum(1 for e in run.node_results if e.status == "success")
        run.failed_nodes = sum(1 for e in run.node_results if e.status == "failed")
        run.status = "failed" if error else derive_run_status(run.successful_nodes, run.failed_nodes)
        run.error = error
        run.completed_at = _now()
        run.duration_ms = _elapsed_ms(run.started_at, run.completed_at)

        logger.info(
            "Run %s finished: %s (%d succeeded, %d failed) in %dms",
            run.run_id, run.status, run.successful_nodes, run.failed_nodes, run.duration_ms,
        )
        self._notify()

        await self._store_call(
            "complete_run",
            run.run_id,
            run.status,
            successful_nodes=run.successful_nodes,
            failed_nodes=run.failed_nodes,
            duration_ms=run.duration_ms,
            error=error,
        )
        return run
