"""
Run history endpoints for client-driven execution.

A client that executes a workflow itself reports the run here: create the
run, report each node transition, then complete it. Server-side execution
(workflows/execute/stream) records runs directly and does not use these.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from nodeflow.auth.dependencies import User, get_current_user
from nodeflow.models.workflow import NodeExecutionStatus, RunScope
from nodeflow.services.run_store import RunStore, get_run_store

router = APIRouter(prefix="/workflow", tags=["runs"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRunRequest(_CamelModel):
    workflow_id: Optional[str] = Field(None, alias="workflowId")
    nodes: Optional[List[Dict[str, Any]]] = None
    scope: RunScope = "full"
    selected_node_ids: Optional[List[str]] = Field(None, alias="selectedNodeIds")


class UpdateNodeRequest(_CamelModel):
    run_id: Optional[str] = Field(None, alias="runId")
    node_id: Optional[str] = Field(None, alias="nodeId")
    status: Optional[NodeExecutionStatus] = None
    output: Any = None
    error: Optional[str] = None
    node_type: Optional[str] = Field(None, alias="nodeType")
    node_name: Optional[str] = Field(None, alias="nodeName")
    duration_ms: Optional[int] = Field(None, alias="duration")


class CompleteRunRequest(_CamelModel):
    run_id: Optional[str] = Field(None, alias="runId")
    status: Optional[Literal["success", "failed", "partial"]] = None


def _assert_run_access_or_404(store: RunStore, run_id: str, user: User) -> Dict[str, Any]:
    run = store.get_run(run_id)
    workflow = store.get_workflow(run["workflow_id"]) if run else None
    if not workflow or str(workflow.get("user_id")) != user.sub:
        raise HTTPException(status_code=404, detail="Run not found or unauthorized")
    return run


@router.post("/create-run")
def create_run(
    request: CreateRunRequest,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    if not request.workflow_id:
        raise HTTPException(status_code=400, detail="Workflow ID required")
    try:
        workflow = store.get_workflow(request.workflow_id)
        if not workflow or str(workflow.get("user_id")) != user.sub:
            raise HTTPException(status_code=404, detail="Workflow not found")

        run_id = store.create_run(
            request.workflow_id,
            len(request.nodes or []),
            request.scope,
            request.selected_node_ids,
        )
        return {"runId": run_id}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create run: {str(e)}")


@router.post("/update-node")
def update_node(
    request: UpdateNodeRequest,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    if not request.run_id or not request.node_id or not request.status:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        _assert_run_access_or_404(store, request.run_id, user)
        store.update_node_execution(
            request.run_id,
            request.node_id,
            request.node_type or "unknown",
            request.node_name or "Node",
            request.status,
            output=request.output,
            error=request.error,
            duration_ms=request.duration_ms,
        )
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update node execution: {str(e)}")


@router.post("/complete-run")
def complete_run(
    request: CompleteRunRequest,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    if not request.run_id or not request.status:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        _assert_run_access_or_404(store, request.run_id, user)
        store.complete_run(request.run_id, request.status)
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to complete run: {str(e)}")
