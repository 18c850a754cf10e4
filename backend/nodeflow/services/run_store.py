"""
Record store for workflows and their run history.

RunStore is the interface the engine and the API depend on; SupabaseRunStore
is the production implementation over three tables:

- workflows:        id, user_id, name, content (jsonb {nodes, edges}), timestamps
- workflow_runs:    id, workflow_id, status, scope, counters, timing, error
- node_executions:  id, run_id, node_id, node_type, node_name, status,
                    output, error, timing (unique on run_id + node_id)

Methods are synchronous like the Supabase client itself; async callers wrap
them in asyncio.to_thread.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from nodeflow.db.supabase import get_supabase_client

logger = logging.getLogger(__name__)

PAST_RUNS_LIMIT = 10

TERMINAL_NODE_STATUSES = ("success", "failed")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStore:
    """Persistence interface for workflows and runs."""

    # Runs

    def create_run(
        self,
        workflow_id: str,
        node_count: int,
        scope: str = "full",
        selected_node_ids: Optional[list[str]] = None,
    ) -> str:
        raise NotImplementedError

    def update_node_execution(
        self,
        run_id: str,
        node_id: str,
        node_type: str,
        node_name: str,
        status: str,
        output: Any = None,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        raise NotImplementedError

    def complete_run(
        self,
        run_id: str,
        final_status: str,
        successful_nodes: Optional[int] = None,
        failed_nodes: Optional[int] = None,
        duration_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    def get_run(self, run_id: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    # Workflows

    def get_workflow(self, workflow_id: str) -> Optional[dict[str, Any]]:
        """Workflow row with ``content`` and its most recent runs under ``past_runs``."""
        raise NotImplementedError

    def list_workflows(self, user_id: str) -> list[dict[str, Any]]:
        """User's workflows, most recently updated first, each with ``latest_run``."""
        raise NotImplementedError

    def create_workflow(self, user_id: str, name: str, content: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def update_workflow(self, workflow_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def delete_workflow(self, workflow_id: str) -> None:
        raise NotImplementedError


class SupabaseRunStore(RunStore):
    """RunStore backed by the service-role Supabase client."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # -- runs ---------------------------------------------------------------

    def create_run(self, workflow_id, node_count, scope="full", selected_node_ids=None) -> str:
        row = {
            "workflow_id": workflow_id,
            "status": "running",
            "scope": scope,
            "total_nodes": node_count,
            "successful_nodes": 0,
            "failed_nodes": 0,
            "selected_node_ids": selected_node_ids,
            "started_at": _now_iso(),
        }
        result = self.client.table("workflow_runs").insert(row).execute()
        if not result.data:
            raise RuntimeError(f"Run insert returned no data for workflow {workflow_id}")
        return str(result.data[0]["id"])

    def update_node_execution(
        self,
        run_id,
        node_id,
        node_type,
        node_name,
        status,
        output=None,
        error=None,
        duration_ms=None,
    ) -> None:
        row: dict[str, Any] = {
            "run_id": run_id,
            "node_id": node_id,
            "node_type": node_type or "unknown",
            "node_name": node_name or "Node",
            "status": status,
            "output": output,
            "error": error,
        }
        if status == "running":
            row["started_at"] = _now_iso()
        if status in TERMINAL_NODE_STATUSES:
            row["completed_at"] = _now_iso()
            row["duration_ms"] = duration_ms

        self.client.table("node_executions").upsert(row, on_conflict="run_id,node_id").execute()

        if status in TERMINAL_NODE_STATUSES:
            self._refresh_run_counters(run_id)

    def _refresh_run_counters(self, run_id: str) -> None:
        result = self.client.table("node_executions")\
            .select("status")\
            .eq("run_id", run_id)\
            .execute()
        statuses = [row.get("status") for row in result.data or []]
        self.client.table("workflow_runs").update({
            "successful_nodes": statuses.count("success"),
            "failed_nodes": statuses.count("failed"),
        }).eq("id", run_id).execute()

    def complete_run(
        self,
        run_id,
        final_status,
        successful_nodes=None,
        failed_nodes=None,
        duration_ms=None,
        error=None,
    ) -> None:
        completed_at = datetime.now(timezone.utc)
        update: dict[str, Any] = {
            "status": final_status,
            "completed_at": completed_at.isoformat(),
            "error": error,
        }
        if successful_nodes is not None:
            update["successful_nodes"] = successful_nodes
        if failed_nodes is not None:
            update["failed_nodes"] = failed_nodes

        if duration_ms is None:
            # Client-driven completion: derive duration from the stored start.
            run = self.get_run(run_id)
            started_raw = (run or {}).get("started_at")
            if started_raw:
                started_at = datetime.fromisoformat(str(started_raw).replace("Z", "+00:00"))
                duration_ms = int((completed_at - started_at).total_seconds() * 1000)
        update["duration_ms"] = duration_ms

        self.client.table("workflow_runs").update(update).eq("id", run_id).execute()

    def get_run(self, run_id):
        result = self.client.table("workflow_runs")\
            .select("*")\
            .eq("id", run_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    # -- workflows ----------------------------------------------------------

    def get_workflow(self, workflow_id):
        result = self.client.table("workflows")\
            .select("*")\
            .eq("id", workflow_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        workflow = result.data[0]

        runs = self.client.table("workflow_runs")\
            .select("*")\
            .eq("workflow_id", workflow_id)\
            .order("started_at", desc=True)\
            .limit(PAST_RUNS_LIMIT)\
            .execute()
        workflow["past_runs"] = runs.data or []
        return workflow

    def list_workflows(self, user_id):
        result = self.client.table("workflows")\
            .select("*")\
            .eq("user_id", user_id)\
            .order("updated_at", desc=True)\
            .execute()
        workflows = result.data or []
        if not workflows:
            return []

        # Single query for all runs, newest first; keep the first per workflow.
        workflow_ids = [wf["id"] for wf in workflows]
        runs = self.client.table("workflow_runs")\
            .select("*")\
            .in_("workflow_id", workflow_ids)\
            .order("started_at", desc=True)\
            .execute()
        latest: dict[str, dict[str, Any]] = {}
        for run in runs.data or []:
            latest.setdefault(run["workflow_id"], run)

        for wf in workflows:
            wf["latest_run"] = latest.get(wf["id"])
        return workflows

    def create_workflow(self, user_id, name, content):
        now = _now_iso()
        result = self.client.table("workflows").insert({
            "user_id": user_id,
            "name": name,
            "content": content,
            "created_at": now,
            "updated_at": now,
        }).execute()
        if not result.data:
            raise RuntimeError("Workflow insert returned no data")
        return result.data[0]

    def update_workflow(self, workflow_id, fields):
        update = {**fields, "updated_at": _now_iso()}
        result = self.client.table("workflows").update(update).eq("id", workflow_id).execute()
        if not result.data:
            raise RuntimeError(f"Workflow update returned no data for {workflow_id}")
        return result.data[0]

    def delete_workflow(self, workflow_id):
        # node_executions and workflow_runs cascade on delete
        self.client.table("workflows").delete().eq("id", workflow_id).execute()


def get_run_store() -> RunStore:
    """FastAPI dependency; overridden in tests."""
    return SupabaseRunStore()
