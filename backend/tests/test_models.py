"""
Tests for the workflow graph model: node defaults, clamping, the tagged
union, edges and graph edit operations.
"""

import pytest
from pydantic import ValidationError

from nodeflow.models.node_registry import InputSlot, slot_for_handle
from nodeflow.models.workflow import (
    CropImageNode,
    ExtractFrameNode,
    LLMNode,
    TextNode,
    UploadImageNode,
    WorkflowGraph,
    parse_node,
)


class TestNodeDefaults:
    def test_every_kind_has_defaults(self):
        cases = {
            "text": ("Text", TextNode),
            "uploadImage": ("Upload Image", UploadImageNode),
            "cropImage": ("Crop Image", CropImageNode),
            "extractFrame": ("Extract Frame", ExtractFrameNode),
            "llm": ("Run Any LLM", LLMNode),
        }
        for node_type, (label, cls) in cases.items():
            node = parse_node({"id": "n", "type": node_type})
            assert isinstance(node, cls)
            assert node.label == label

    def test_llm_defaults(self):
        node = parse_node({"id": "n", "type": "llm", "data": {"userMessage": None}})
        assert node.data.model == "gemini-2.5-flash"
        assert node.data.user_message == ""
        assert node.data.system_prompt == ""

    def test_crop_defaults(self):
        node = parse_node({"id": "n", "type": "cropImage", "data": None})
        assert (node.data.x_percent, node.data.y_percent) == (0, 0)
        assert (node.data.width_percent, node.data.height_percent) == (100, 100)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_node({"id": "n", "type": "teleport"})

    def test_type_is_immutable(self):
        node = TextNode(id="n")
        with pytest.raises(ValidationError):
            node.type = "llm"

    def test_unknown_data_keys_survive_export(self):
        node = parse_node({"id": "n", "type": "text", "data": {"value": "hi", "color": "red"}})
        dumped = node.model_dump(by_alias=True)
        assert dumped["data"]["color"] == "red"


class TestCropClamping:
    def test_percents_clamped_on_construction(self):
        node = parse_node({
            "id": "c",
            "type": "cropImage",
            "data": {"xPercent": -5, "yPercent": 150, "widthPercent": "50", "heightPercent": ""},
        })
        assert node.data.x_percent == 0
        assert node.data.y_percent == 100
        assert node.data.width_percent == 50
        assert node.data.height_percent == 100

    def test_non_numeric_percent_rejected(self):
        with pytest.raises(ValidationError):
            parse_node({"id": "c", "type": "cropImage", "data": {"xPercent": "left"}})

    def test_update_reclamps(self):
        graph = WorkflowGraph(nodes=[{"id": "c", "type": "cropImage"}])
        node = graph.update_node_data("c", {"widthPercent": 250})
        assert node.data.width_percent == 100


class TestExtractFrameTimestamp:
    def test_numeric_timestamp_becomes_string(self):
        node = parse_node({"id": "f", "type": "extractFrame", "data": {"timestamp": 12.5}})
        assert node.data.timestamp == "12.5"

    def test_blank_timestamp_defaults(self):
        node = parse_node({"id": "f", "type": "extractFrame", "data": {"timestamp": "  "}})
        assert node.data.timestamp == "0"


class TestSlots:
    def test_missing_handle_uses_default_slot(self):
        assert slot_for_handle("llm", None).slot == InputSlot.USER_MESSAGE
        assert slot_for_handle("cropImage", None).slot == InputSlot.IMAGE

    def test_named_handle(self):
        assert slot_for_handle("llm", "images").slot == InputSlot.IMAGES

    def test_unknown_handle(self):
        assert slot_for_handle("llm", "bogus") is None
        assert slot_for_handle("uploadImage", None) is None


class TestWorkflowGraph:
    def _graph(self) -> WorkflowGraph:
        return WorkflowGraph.model_validate({
            "nodes": [
                {"id": "t", "type": "text", "data": {"value": "hello"}},
                {"id": "l", "type": "llm"},
            ],
            "edges": [
                {"id": "e1", "source": "t", "target": "l", "targetHandle": "user_message"},
            ],
        })

    def test_duplicate_node_ids_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowGraph(nodes=[{"id": "a", "type": "text"}, {"id": "a", "type": "llm"}])

    def test_edge_to_unknown_node_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowGraph(
                nodes=[{"id": "a", "type": "text"}],
                edges=[{"source": "a", "target": "ghost"}],
            )

    def test_duplicate_edge_rejected(self):
        with pytest.raises(ValidationError):
            WorkflowGraph(
                nodes=[{"id": "a", "type": "text"}, {"id": "b", "type": "llm"}],
                edges=[
                    {"id": "e1", "source": "a", "target": "b"},
                    {"id": "e2", "source": "a", "target": "b"},
                ],
            )

    def test_fan_in_edges_to_same_handle_allowed(self):
        graph = WorkflowGraph(
            nodes=[
                {"id": "a", "type": "text"},
                {"id": "b", "type": "text"},
                {"id": "l", "type": "llm"},
            ],
            edges=[
                {"source": "a", "target": "l", "targetHandle": "user_message"},
                {"source": "b", "target": "l", "targetHandle": "user_message"},
            ],
        )
        assert len(graph.edges) == 2

    def test_connect_ignores_duplicates(self):
        graph = self._graph()
        assert graph.connect({"source": "t", "target": "l", "targetHandle": "user_message"}) is False
        assert graph.connect({"source": "t", "target": "l", "targetHandle": "system_prompt"}) is True
        assert graph.edges[-1].id == "e-t-output-l-system_prompt"

    def test_remove_node_drops_edges(self):
        graph = self._graph()
        graph.remove_node("t")
        assert [n.id for n in graph.nodes] == ["l"]
        assert graph.edges == []

    def test_disconnect(self):
        graph = self._graph()
        graph.disconnect("e1")
        assert graph.edges == []
        with pytest.raises(KeyError):
            graph.disconnect("e1")

    def test_add_node(self):
        graph = self._graph()
        graph.add_node({"id": "img", "type": "uploadImage", "data": {"imageUrl": "https://x/a.png"}})
        assert graph.get_node("img").data.image_url == "https://x/a.png"
        with pytest.raises(ValueError):
            graph.add_node({"id": "img", "type": "text"})

    def test_document_round_trip_keeps_camel_case(self):
        graph = self._graph()
        doc = graph.to_document()
        assert doc["edges"][0]["targetHandle"] == "user_message"
        assert doc["nodes"][1]["data"]["userMessage"] == ""
        assert WorkflowGraph.model_validate(doc).to_document() == doc
