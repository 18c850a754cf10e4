"""
Node type registry: the source of truth for what each node type accepts.

Maps editor node type strings to their input slots. Each slot names the
handle id the editor uses, the data field that backs it when nothing is
connected, and how values from several incoming edges are combined.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class InputSlot(str, Enum):
    INPUT = "input"
    IMAGE = "image"
    VIDEO_URL = "video_url"
    USER_MESSAGE = "user_message"
    SYSTEM_PROMPT = "system_prompt"
    IMAGES = "images"


class Aggregation(str, Enum):
    # Newline-join in edge order
    CONCAT_TEXT = "concat_text"
    # First non-null value in edge order
    FIRST_VALUE = "first_value"
    # Every non-null value, in edge order
    COLLECT_LIST = "collect_list"


class SlotSpec(BaseModel):
    slot: InputSlot
    aggregation: Aggregation
    data_field: str | None = None
    required: bool = False
    # Node error when a required slot resolves to nothing
    missing_message: str | None = None
    is_default: bool = False


class NodeTypeSpec(BaseModel):
    inputs: list[SlotSpec] = []
    # Data field a node hands downstream before (or instead of) being executed.
    stored_output_field: str | None = None

    def default_slot(self) -> SlotSpec | None:
        return next((s for s in self.inputs if s.is_default), None)

    def get_slot(self, slot: InputSlot) -> SlotSpec | None:
        return next((s for s in self.inputs if s.slot == slot), None)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
# Keys match the editor node `type` values; slot values match its Handle ids.

NODE_REGISTRY: dict[str, NodeTypeSpec] = {
    "text": NodeTypeSpec(
        inputs=[
            SlotSpec(
                slot=InputSlot.INPUT,
                aggregation=Aggregation.CONCAT_TEXT,
                data_field="value",
                is_default=True,
            ),
        ],
        stored_output_field="value",
    ),
    "uploadImage": NodeTypeSpec(stored_output_field="image_url"),
    "uploadVideo": NodeTypeSpec(stored_output_field="video_url"),
    "cropImage": NodeTypeSpec(
        inputs=[
            SlotSpec(
                slot=InputSlot.IMAGE,
                aggregation=Aggregation.FIRST_VALUE,
                data_field="image_url",
                required=True,
                missing_message="CropImage node requires an image input",
                is_default=True,
            ),
        ],
    ),
    "extractFrame": NodeTypeSpec(
        inputs=[
            SlotSpec(
                slot=InputSlot.VIDEO_URL,
                aggregation=Aggregation.FIRST_VALUE,
                data_field="video_url",
                required=True,
                missing_message="ExtractFrame node requires a video input",
                is_default=True,
            ),
        ],
    ),
    "llm": NodeTypeSpec(
        inputs=[
            SlotSpec(
                slot=InputSlot.USER_MESSAGE,
                aggregation=Aggregation.CONCAT_TEXT,
                data_field="user_message",
                required=True,
                missing_message="userMessage is required",
                is_default=True,
            ),
            SlotSpec(
                slot=InputSlot.SYSTEM_PROMPT,
                aggregation=Aggregation.CONCAT_TEXT,
                data_field="system_prompt",
            ),
            SlotSpec(slot=InputSlot.IMAGES, aggregation=Aggregation.COLLECT_LIST),
        ],
    ),
}


def get_node_spec(node_type: str) -> NodeTypeSpec | None:
    """Look up a node type spec, returning None if unknown."""
    return NODE_REGISTRY.get(node_type)


def slot_for_handle(node_type: str, handle: str | None) -> SlotSpec | None:
    """
    Resolve an edge's target handle to a slot on the target node.

    A missing handle feeds the node's default slot. Unknown handles
    return None and the edge is ignored by input resolution.
    """
    spec = get_node_spec(node_type)
    if spec is None:
        return None
    if not handle:
        return spec.default_slot()
    try:
        slot = InputSlot(handle)
    except ValueError:
        return None
    return spec.get_slot(slot)
