"""
Node executor.

Executes a single workflow node: resolves its effective inputs from the
static graph plus the results already produced in this run, then performs
the node's operation through the media collaborators.

Key concepts:
- Input resolution is per slot (see models/node_registry.py). Connected
  edges win over the node's own stored field; with no edges the stored
  field is authoritative.
- An upstream value is its result from this run when one exists, else the
  upstream node's stored value (an upload node's URL, a text node's text).
- Several edges into one slot are combined by the slot's aggregation, in
  edge order.
- Collaborators report failure as (value, error) tuples or by raising;
  both become RemoteOperationError here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Tuple

from nodeflow.agents.media_utils import compute_crop_box, is_percent_timestamp, resolve_seek_time
from nodeflow.models.node_registry import (
    Aggregation,
    InputSlot,
    SlotSpec,
    get_node_spec,
    slot_for_handle,
)
from nodeflow.models.workflow import (
    BaseNode,
    CropImageNode,
    Edge,
    ExtractFrameNode,
    LLMNode,
    NodeResult,
    TextNode,
)
from nodeflow.services.errors import NodeExecutionError, RemoteOperationError, ValidationError

logger = logging.getLogger(__name__)

RemoteResult = Tuple[Optional[str], Optional[str]]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass
class MediaServices:
    """The remote operations nodes depend on. Swapped for fakes in tests."""

    probe_image_size: Callable[[str], Awaitable[tuple[int, int]]]
    crop_image: Callable[[str, int, int, int, int], Awaitable[RemoteResult]]
    probe_video_duration: Callable[[str], Awaitable[float]]
    extract_frame: Callable[[str, str], Awaitable[RemoteResult]]
    llm_complete: Callable[[Optional[str], str, list[str], str], Awaitable[RemoteResult]]


def default_media_services() -> MediaServices:
    """Production collaborators: Pillow crop, OpenCV frames, Gemini LLM, R2 storage."""
    from nodeflow.agents.frame_extraction.extractor import extract_frame, probe_video_duration
    from nodeflow.agents.image_crop.cropper import crop_image, probe_image_size
    from nodeflow.llm.gemini import llm_complete

    return MediaServices(
        probe_image_size=probe_image_size,
        crop_image=crop_image,
        probe_video_duration=probe_video_duration,
        extract_frame=extract_frame,
        llm_complete=llm_complete,
    )


# ---------------------------------------------------------------------------
# Executor registry
# ---------------------------------------------------------------------------

# Maps node type names to their async executor functions.
# Each executor receives (node, inputs, services) and returns the node output.
# Inputs are already resolved per slot, keyed by slot handle id.
_registry: dict[str, Callable] = {}


def executor(node_type: str):
    """
    Decorator that registers an async executor function for a node type.

    Usage:
        @executor("myNodeType")
        async def _exec_my_node(node, inputs: dict, services: MediaServices) -> Any:
            return result
    """
    def decorator(fn: Callable):
        _registry[node_type] = fn
        return fn
    return decorator


# ---------------------------------------------------------------------------
# Input resolution
# ---------------------------------------------------------------------------


def stored_value(node: BaseNode) -> Any:
    """The value a node hands downstream without having been executed."""
    spec = get_node_spec(node.type)
    if spec is None or spec.stored_output_field is None:
        return None
    return getattr(node.data, spec.stored_output_field, None)


def _normalize_text_segment(value: Any) -> str:
    """Normalize an arbitrary value into a text segment for fan-in merge."""
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(item) for item in value if item is not None and str(item).strip())
    return str(value)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return [value]


def aggregate(aggregation: Aggregation, values: Sequence[Any], input_key: str = "") -> Any:
    """
    Combine the values arriving on one slot, in edge order.

    - CONCAT_TEXT: newline join, blank values skipped; None if nothing remains.
    - FIRST_VALUE: first non-empty value.
    - COLLECT_LIST: every non-empty string, lists flattened.
    """
    if aggregation == Aggregation.CONCAT_TEXT:
        parts = [_normalize_text_segment(v) for v in values]
        parts = [p for p in parts if p.strip()]
        return "\n".join(parts) if parts else None

    if aggregation == Aggregation.FIRST_VALUE:
        present = [v for v in values if v is not None and v != ""]
        if len(present) > 1:
            logger.info(
                "Fan-in on single input '%s': %d values, using the first",
                input_key,
                len(present),
            )
        return present[0] if present else None

    collected: list[Any] = []
    for value in values:
        for item in _as_list(value):
            if isinstance(item, str) and item.strip():
                collected.append(item)
    return collected


def incoming_edges(node: BaseNode, slot: InputSlot, all_edges: Sequence[Edge]) -> list[Edge]:
    """Edges feeding `slot` on `node`, in edge order. Unknown handles are skipped."""
    matched: list[Edge] = []
    for edge in all_edges:
        if edge.target != node.id:
            continue
        spec = slot_for_handle(node.type, edge.target_handle)
        if spec is None:
            logger.debug(
                "Ignoring edge %s -> %s: node type '%s' has no input '%s'",
                edge.source, node.id, node.type, edge.target_handle,
            )
            continue
        if spec.slot == slot:
            matched.append(edge)
    return matched


def _upstream_value(
    edge: Edge,
    node_map: Mapping[str, BaseNode],
    prior_results: Mapping[str, NodeResult],
) -> Any:
    prior = prior_results.get(edge.source)
    if prior is not None and prior.output is not None:
        return prior.output
    upstream = node_map.get(edge.source)
    if upstream is None:
        return None
    return stored_value(upstream)


def resolve_input(
    node: BaseNode,
    slot_spec: SlotSpec,
    all_nodes: Sequence[BaseNode],
    all_edges: Sequence[Edge],
    prior_results: Mapping[str, NodeResult],
) -> Any:
    """Resolve one slot. A connection, even one that yields nothing, overrides the node's own field."""
    edges = incoming_edges(node, slot_spec.slot, all_edges)

    if not edges:
        own = getattr(node.data, slot_spec.data_field, None) if slot_spec.data_field else None
        if slot_spec.aggregation == Aggregation.COLLECT_LIST:
            return aggregate(slot_spec.aggregation, [own])
        if isinstance(own, str) and not own.strip():
            return None
        return own

    node_map = {n.id: n for n in all_nodes}
    values = [_upstream_value(edge, node_map, prior_results) for edge in edges]
    return aggregate(slot_spec.aggregation, values, input_key=slot_spec.slot.value)


def resolve_node_inputs(
    node: BaseNode,
    all_nodes: Sequence[BaseNode],
    all_edges: Sequence[Edge],
    prior_results: Mapping[str, NodeResult],
) -> dict[str, Any]:
    """Resolve every input slot of a node, keyed by slot handle id."""
    spec = get_node_spec(node.type)
    if spec is None:
        return {}
    return {
        slot_spec.slot.value: resolve_input(node, slot_spec, all_nodes, all_edges, prior_results)
        for slot_spec in spec.inputs
    }


def check_required_inputs(node: BaseNode, inputs: Mapping[str, Any]) -> None:
    """
    Raise ValidationError for the first required slot that resolved to
    nothing. Required slots carry text or a URL, so a non-string or blank
    value counts as missing.
    """
    spec = get_node_spec(node.type)
    if spec is None:
        return
    for slot_spec in spec.inputs:
        if not slot_spec.required:
            continue
        value = inputs.get(slot_spec.slot.value)
        if not isinstance(value, str) or not value.strip():
            message = slot_spec.missing_message or f"{node.type} node requires input '{slot_spec.slot.value}'"
            raise ValidationError(message)


# ---------------------------------------------------------------------------
# Remote call helpers
# ---------------------------------------------------------------------------


async def _call_remote(what: str, awaitable: Awaitable[Any]) -> Any:
    try:
        return await awaitable
    except NodeExecutionError:
        raise
    except Exception as e:
        raise RemoteOperationError(f"{what} failed: {type(e).__name__}: {e}") from e


def _unwrap(result: RemoteResult, what: str) -> str:
    value, error = result
    if error:
        raise RemoteOperationError(error)
    if not value:
        raise RemoteOperationError(f"{what} returned no result")
    return value


# ---------------------------------------------------------------------------
# Node executors
# ---------------------------------------------------------------------------


@executor("text")
async def _exec_text(node: TextNode, inputs: dict, services: MediaServices) -> Any:
    value = inputs.get(InputSlot.INPUT.value)
    return value if value is not None else ""


@executor("uploadImage")
async def _exec_upload_image(node, inputs: dict, services: MediaServices) -> Any:
    # None means "not uploaded yet"; consumers treat it as a missing input.
    return node.data.image_url or None


@executor("uploadVideo")
async def _exec_upload_video(node, inputs: dict, services: MediaServices) -> Any:
    return node.data.video_url or None


@executor("cropImage")
async def _exec_crop_image(node: CropImageNode, inputs: dict, services: MediaServices) -> Any:
    """
    Crop the input image by the node's percentage region.

    The image is probed for its pixel size and the percentages converted to
    a pixel box before calling the crop backend.
    """
    image_url = inputs[InputSlot.IMAGE.value]

    width, height = await _call_remote("Image probe", services.probe_image_size(image_url))
    x, y, w, h = compute_crop_box(
        width,
        height,
        node.data.x_percent,
        node.data.y_percent,
        node.data.width_percent,
        node.data.height_percent,
    )
    logger.debug("Node %s crop box %s on %dx%d image", node.id, (x, y, w, h), width, height)

    result = await _call_remote("Crop", services.crop_image(image_url, x, y, w, h))
    return _unwrap(result, "Crop")


@executor("extractFrame")
async def _exec_extract_frame(node: ExtractFrameNode, inputs: dict, services: MediaServices) -> Any:
    """Extract one frame at the node's timestamp (seconds, or a percentage of the duration)."""
    video_url = inputs[InputSlot.VIDEO_URL.value]

    timestamp = node.data.timestamp
    if is_percent_timestamp(timestamp):
        duration = await _call_remote("Video probe", services.probe_video_duration(video_url))
        seek_time = resolve_seek_time(timestamp, duration)
    else:
        seek_time = resolve_seek_time(timestamp)

    result = await _call_remote("Frame extraction", services.extract_frame(video_url, seek_time))
    return _unwrap(result, "Frame extraction")


@executor("llm")
async def _exec_llm(node: LLMNode, inputs: dict, services: MediaServices) -> Any:
    user_message = inputs[InputSlot.USER_MESSAGE.value]

    system_prompt = inputs.get(InputSlot.SYSTEM_PROMPT.value) or None
    image_urls = inputs.get(InputSlot.IMAGES.value) or []

    logger.info(
        "LLM node %s: model=%s, %d chars, %d images",
        node.id,
        node.data.model,
        len(user_message),
        len(image_urls),
    )
    result = await _call_remote(
        "LLM",
        services.llm_complete(system_prompt, user_message, image_urls, node.data.model),
    )
    return _unwrap(result, "LLM")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def execute_node(
    node: BaseNode,
    all_nodes: Sequence[BaseNode],
    all_edges: Sequence[Edge],
    prior_results: Mapping[str, NodeResult],
    services: MediaServices | None = None,
) -> Any:
    """
    Execute one node and return its output.

    Raises:
        ValidationError: the node's inputs are missing or malformed.
        RemoteOperationError: a backend call failed.
    """
    exec_fn = _registry.get(node.type)
    if exec_fn is None:
        raise ValidationError(f"No executor for node type '{node.type}'", node_id=node.id)

    try:
        inputs = resolve_node_inputs(node, all_nodes, all_edges, prior_results)
        check_required_inputs(node, inputs)
        return await exec_fn(node, inputs, services or default_media_services())
    except NodeExecutionError as e:
        if e.node_id is None:
            e.node_id = node.id
        raise
