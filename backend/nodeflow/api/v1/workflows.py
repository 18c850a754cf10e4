"""
Workflow persistence and execution API endpoints.

A workflow's content is the editor document ``{nodes, edges}``. Content is
validated (and defaults filled in) before it is stored, so every stored
document loads into a WorkflowGraph. Workflows belong to the authenticated
user; another user's workflow is a 403.

Execution streams Server-Sent Events. Saved workflows (``workflow_id`` set)
get a persisted run record; unsaved graphs run without history.
"""

import asyncio
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from nodeflow.api.v1.media import get_media_services
from nodeflow.auth.dependencies import User, get_current_user
from nodeflow.models.workflow import WorkflowGraph
from nodeflow.services.dag import validate_dag
from nodeflow.services.errors import CycleError
from nodeflow.services.node_executor import MediaServices
from nodeflow.services.run_store import RunStore, get_run_store
from nodeflow.services.selective import induced_subgraph
from nodeflow.services.streaming import execute_workflow_streaming

router = APIRouter(prefix="/workflows", tags=["workflows"])


class WorkflowContent(BaseModel):
    """Editor document: nodes and edges as the canvas saves them."""
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content: WorkflowContent = Field(default_factory=WorkflowContent)


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[WorkflowContent] = None


class WorkflowImport(WorkflowContent):
    name: Optional[str] = Field(None, min_length=1, max_length=255)


class WorkflowResponse(BaseModel):
    id: str
    name: str
    user_id: str
    content: Dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    latest_run: Optional[Dict[str, Any]] = None
    past_runs: Optional[List[Dict[str, Any]]] = None


class ExecuteRequest(BaseModel):
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    workflow_id: Optional[str] = None
    selected_node_ids: Optional[List[str]] = None


def _to_response(row: Dict[str, Any]) -> WorkflowResponse:
    return WorkflowResponse(
        id=str(row["id"]),
        name=row["name"],
        user_id=str(row.get("user_id") or ""),
        content=row.get("content") or {"nodes": [], "edges": []},
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        latest_run=row.get("latest_run"),
        past_runs=row.get("past_runs"),
    )


def _validate_content(content: WorkflowContent) -> WorkflowGraph:
    try:
        return WorkflowGraph.model_validate(content.model_dump())
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": "Invalid workflow content",
                "errors": e.errors(include_url=False, include_context=False),
            },
        )


def _assert_workflow_access_or_404(
    store: RunStore,
    workflow_id: str,
    user: User,
) -> Dict[str, Any]:
    wf = store.get_workflow(workflow_id)
    if not wf:
        raise HTTPException(status_code=404, detail="Workflow not found")

    wf_user_id = str(wf.get("user_id")) if wf.get("user_id") else None
    if wf_user_id != user.sub:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this workflow",
        )
    return wf


@router.get("", response_model=List[WorkflowResponse])
def list_workflows(
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    """List the current user's workflows, newest first, each with its latest run."""
    try:
        return [_to_response(row) for row in store.list_workflows(user.sub)]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to list workflows: {str(e)}")


@router.post("", response_model=WorkflowResponse, status_code=201)
def create_workflow(
    workflow: WorkflowCreate,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    graph = _validate_content(workflow.content)
    try:
        row = store.create_workflow(user.sub, workflow.name, graph.to_document())
        return _to_response(row)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create workflow: {str(e)}")


@router.post("/import", response_model=WorkflowResponse, status_code=201)
def import_workflow(
    document: WorkflowImport,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    """Create a workflow from an exported ``{nodes, edges}`` document."""
    graph = _validate_content(document)
    name = document.name or "Imported Workflow"
    try:
        row = store.create_workflow(user.sub, name, graph.to_document())
        return _to_response(row)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to import workflow: {str(e)}")


@router.post("/execute/stream")
async def execute_workflow_stream(
    request: ExecuteRequest,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
    services: MediaServices = Depends(get_media_services),
):
    """
    Execute a graph with Server-Sent Events (SSE) streaming.

    ``selected_node_ids`` runs only those nodes (scope ``single`` for one
    node, ``selected`` otherwise). A cyclic graph is rejected with 422
    before anything runs.
    """
    graph = _validate_content(WorkflowContent(nodes=request.nodes, edges=request.edges))

    nodes, edges = graph.nodes, graph.edges
    if request.selected_node_ids is not None:
        nodes, edges = induced_subgraph(graph.nodes, graph.edges, request.selected_node_ids)

    try:
        validate_dag(nodes, edges)
    except CycleError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "cycle": e.cycle_path},
        )

    run_store: Optional[RunStore] = None
    if request.workflow_id:
        # Supabase calls block; keep them off the event loop
        await asyncio.to_thread(_assert_workflow_access_or_404, store, request.workflow_id, user)
        run_store = store

    return StreamingResponse(
        execute_workflow_streaming(
            graph.nodes,
            graph.edges,
            selected_node_ids=request.selected_node_ids,
            services=services,
            store=run_store,
            workflow_id=request.workflow_id,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(
    workflow_id: str,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    """Get a workflow with its 10 most recent runs."""
    try:
        wf = _assert_workflow_access_or_404(store, workflow_id, user)
        return _to_response(wf)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get workflow: {str(e)}")


@router.get("/{workflow_id}/export")
def export_workflow(
    workflow_id: str,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    """Download the workflow document as a JSON attachment."""
    try:
        wf = _assert_workflow_access_or_404(store, workflow_id, user)
        content = wf.get("content") or {"nodes": [], "edges": []}
        filename = re.sub(r"[^A-Za-z0-9_-]+", "-", wf.get("name") or "workflow").strip("-") or "workflow"
        return JSONResponse(
            content={"nodes": content.get("nodes", []), "edges": content.get("edges", [])},
            headers={"Content-Disposition": f'attachment; filename="{filename}.json"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to export workflow: {str(e)}")


@router.put("/{workflow_id}", response_model=WorkflowResponse)
def update_workflow(
    workflow_id: str,
    workflow: WorkflowUpdate,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    try:
        _assert_workflow_access_or_404(store, workflow_id, user)

        fields: Dict[str, Any] = {}
        if workflow.name is not None:
            fields["name"] = workflow.name
        if workflow.content is not None:
            fields["content"] = _validate_content(workflow.content).to_document()
        if not fields:
            raise HTTPException(status_code=400, detail="Nothing to update")

        return _to_response(store.update_workflow(workflow_id, fields))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update workflow: {str(e)}")


@router.delete("/{workflow_id}", status_code=204)
def delete_workflow(
    workflow_id: str,
    user: User = Depends(get_current_user),
    store: RunStore = Depends(get_run_store),
):
    """Delete a workflow. Its runs and node executions cascade."""
    try:
        _assert_workflow_access_or_404(store, workflow_id, user)
        store.delete_workflow(workflow_id)
        return None
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete workflow: {str(e)}")
