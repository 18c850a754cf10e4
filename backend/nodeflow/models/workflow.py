"""
Workflow models: the editor graph as the engine sees it.

A workflow document is the JSON the editor saves and exports verbatim:
``{"nodes": [...], "edges": [...]}``. Nodes are a tagged union on ``type``;
each kind carries its own data payload with every field defaulted, so a
node loaded from an old document never has a missing field.

JSON keeps the editor's camelCase names (``imageUrl``, ``xPercent``);
Python code uses snake_case attributes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from nodeflow.config import DEFAULT_LLM_MODEL


NodeType = Literal["text", "uploadImage", "uploadVideo", "cropImage", "extractFrame", "llm"]
NodeExecutionStatus = Literal["idle", "running", "success", "failed"]
RunStatus = Literal["running", "success", "failed", "partial"]
RunScope = Literal["full", "selected", "single"]

NODE_TYPES: tuple[str, ...] = ("text", "uploadImage", "uploadVideo", "cropImage", "extractFrame", "llm")


class Position(BaseModel):
    x: float = 0
    y: float = 0


# ---------------------------------------------------------------------------
# Node data payloads
# ---------------------------------------------------------------------------


class NodeData(BaseModel):
    """Base for per-kind payloads. Unknown editor keys are kept for export."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", validate_assignment=True)

    label: str = "Node"


class TextNodeData(NodeData):
    label: str = "Text"
    value: str = ""


class UploadImageNodeData(NodeData):
    label: str = "Upload Image"
    image_url: str | None = Field(None, alias="imageUrl")


class UploadVideoNodeData(NodeData):
    label: str = "Upload Video"
    video_url: str | None = Field(None, alias="videoUrl")


class CropImageNodeData(NodeData):
    label: str = "Crop Image"
    image_url: str | None = Field(None, alias="imageUrl")
    x_percent: float = Field(0, alias="xPercent")
    y_percent: float = Field(0, alias="yPercent")
    width_percent: float = Field(100, alias="widthPercent")
    height_percent: float = Field(100, alias="heightPercent")

    @field_validator("x_percent", "y_percent", "width_percent", "height_percent", mode="before")
    @classmethod
    def clamp_percent(cls, value: Any, info) -> float:
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{info.field_name} must be a number, got {value!r}")
        return max(0.0, min(100.0, number))


class ExtractFrameNodeData(NodeData):
    label: str = "Extract Frame"
    video_url: str | None = Field(None, alias="videoUrl")
    # Plain seconds ("12.5") or a share of the video duration ("50%").
    timestamp: str = "0"

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, value: Any) -> str:
        if value is None:
            return "0"
        if isinstance(value, (int, float)):
            return str(value)
        return str(value).strip() or "0"


class LLMNodeData(NodeData):
    label: str = "Run Any LLM"
    model: str = DEFAULT_LLM_MODEL
    system_prompt: str = Field("", alias="systemPrompt")
    user_message: str = Field("", alias="userMessage")

    @field_validator("system_prompt", "user_message", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> str:
        return "" if value is None else value

    @field_validator("model", mode="before")
    @classmethod
    def default_model(cls, value: Any) -> str:
        return value or DEFAULT_LLM_MODEL


# ---------------------------------------------------------------------------
# Nodes (tagged union on `type`)
# ---------------------------------------------------------------------------


class BaseNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., min_length=1)
    position: Position = Field(default_factory=Position)

    @field_validator("position", mode="before")
    @classmethod
    def default_position(cls, value: Any) -> Any:
        return Position() if value is None else value

    @field_validator("data", mode="before", check_fields=False)
    @classmethod
    def default_data(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def label(self) -> str:
        return self.data.label


class TextNode(BaseNode):
    type: Literal["text"] = Field("text", frozen=True)
    data: TextNodeData = Field(default_factory=TextNodeData)


class UploadImageNode(BaseNode):
    type: Literal["uploadImage"] = Field("uploadImage", frozen=True)
    data: UploadImageNodeData = Field(default_factory=UploadImageNodeData)


class UploadVideoNode(BaseNode):
    type: Literal["uploadVideo"] = Field("uploadVideo", frozen=True)
    data: UploadVideoNodeData = Field(default_factory=UploadVideoNodeData)


class CropImageNode(BaseNode):
    type: Literal["cropImage"] = Field("cropImage", frozen=True)
    data: CropImageNodeData = Field(default_factory=CropImageNodeData)


class ExtractFrameNode(BaseNode):
    type: Literal["extractFrame"] = Field("extractFrame", frozen=True)
    data: ExtractFrameNodeData = Field(default_factory=ExtractFrameNodeData)


class LLMNode(BaseNode):
    type: Literal["llm"] = Field("llm", frozen=True)
    data: LLMNodeData = Field(default_factory=LLMNodeData)


Node = Annotated[
    Union[TextNode, UploadImageNode, UploadVideoNode, CropImageNode, ExtractFrameNode, LLMNode],
    Field(discriminator="type"),
]

_node_adapter: TypeAdapter = TypeAdapter(Node)


def parse_node(raw: dict[str, Any] | BaseNode) -> BaseNode:
    """Validate an editor node dict into its typed node class."""
    if isinstance(raw, BaseNode):
        return raw
    return _node_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Edges and graph
# ---------------------------------------------------------------------------


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    source: str
    target: str
    source_handle: str | None = Field(None, alias="sourceHandle")
    target_handle: str | None = Field(None, alias="targetHandle")

    @property
    def key(self) -> tuple[str, str, str | None, str | None]:
        """Identity used for duplicate detection."""
        return (self.source, self.target, self.source_handle, self.target_handle)


class WorkflowGraph(BaseModel):
    """
    An editor workflow: ordered nodes plus edges.

    Structural integrity (unique ids, edges between known nodes, no duplicate
    edges) is checked on construction. Acyclicity is checked only before
    execution, since the editor may hold a cyclic draft.
    """

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_integrity(self) -> "WorkflowGraph":
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node ID '{node.id}'")
            seen.add(node.id)

        edge_keys: set[tuple] = set()
        for edge in self.edges:
            if edge.source not in seen:
                raise ValueError(f"Edge references unknown source node '{edge.source}'")
            if edge.target not in seen:
                raise ValueError(f"Edge references unknown target node '{edge.target}'")
            if edge.key in edge_keys:
                raise ValueError(
                    f"Duplicate edge {edge.source}:{edge.source_handle} -> "
                    f"{edge.target}:{edge.target_handle}"
                )
            edge_keys.add(edge.key)
        return self

    def node_map(self) -> dict[str, BaseNode]:
        return {n.id: n for n in self.nodes}

    def get_node(self, node_id: str) -> BaseNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def add_node(self, node: dict[str, Any] | BaseNode) -> BaseNode:
        parsed = parse_node(node)
        if self.get_node(parsed.id) is not None:
            raise ValueError(f"Duplicate node ID '{parsed.id}'")
        self.nodes.append(parsed)
        return parsed

    def remove_node(self, node_id: str) -> None:
        """Remove a node together with every edge touching it."""
        if self.get_node(node_id) is None:
            raise KeyError(node_id)
        self.nodes = [n for n in self.nodes if n.id != node_id]
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]

    def connect(self, edge: dict[str, Any] | Edge) -> bool:
        """Add an edge. Returns False when an identical edge already exists."""
        parsed = edge if isinstance(edge, Edge) else Edge.model_validate(edge)
        for endpoint in (parsed.source, parsed.target):
            if self.get_node(endpoint) is None:
                raise ValueError(f"Edge references unknown node '{endpoint}'")
        if any(e.key == parsed.key for e in self.edges):
            return False
        if parsed.id is None:
            parsed.id = (
                f"e-{parsed.source}-{parsed.source_handle or 'output'}-"
                f"{parsed.target}-{parsed.target_handle or 'input'}"
            )
        self.edges.append(parsed)
        return True

    def disconnect(self, edge_id: str) -> None:
        remaining = [e for e in self.edges if e.id != edge_id]
        if len(remaining) == len(self.edges):
            raise KeyError(edge_id)
        self.edges = remaining

    def update_node_data(self, node_id: str, updates: dict[str, Any]) -> BaseNode:
        """Merge editor updates into a node's data, re-running validation and clamping."""
        node = self.get_node(node_id)
        if node is None:
            raise KeyError(node_id)
        merged = {**node.data.model_dump(by_alias=True), **updates}
        node.data = type(node.data).model_validate(merged)
        return node

    def to_document(self) -> dict[str, Any]:
        """Serialise to the editor's `{nodes, edges}` JSON document."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


class NodeResult(BaseModel):
    """Latest output (or error) for a node. Overwritten on each re-execution."""

    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(..., alias="nodeId")
    output: Any = None
    timestamp: datetime
    error: str | None = None


class NodeExecutionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(..., alias="nodeId")
    node_type: str = Field(..., alias="nodeType")
    node_name: str = Field(..., alias="nodeName")
    status: Literal["running", "success", "failed"]
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    duration_ms: int | None = Field(None, alias="duration")
    output: Any = None
    error: str | None = None


class WorkflowRun(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    workflow_id: str | None = Field(None, alias="workflowId")
    scope: RunScope = "full"
    status: RunStatus = "running"
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    duration_ms: int | None = Field(None, alias="duration")
    node_results: list[NodeExecutionResult] = Field(default_factory=list, alias="nodeResults")
    total_nodes: int = Field(0, alias="totalNodes")
    successful_nodes: int = Field(0, alias="successfulNodes")
    failed_nodes: int = Field(0, alias="failedNodes")
    selected_node_ids: list[str] | None = Field(None, alias="selectedNodeIds")
    error: str | None = None
