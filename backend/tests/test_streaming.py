"""
Tests for the SSE event stream produced by execute_workflow_streaming.
"""

import asyncio
import json

import pytest

from nodeflow.models.workflow import Edge, parse_node
from nodeflow.services.streaming import execute_workflow_streaming, format_sse


def node(node_id: str, node_type: str, **data):
    return parse_node({"id": node_id, "type": node_type, "data": data})


async def collect(stream) -> list[dict]:
    events = []
    async for chunk in stream:
        assert chunk.startswith("data: ") and chunk.endswith("\n\n")
        events.append(json.loads(chunk[len("data: "):]))
    return events


class TestFormatSse:
    def test_format(self):
        assert format_sse({"event": "x", "n": 1}) == 'data: {"event": "x", "n": 1}\n\n'


class TestStreaming:
    @pytest.mark.asyncio
    async def test_full_run_event_sequence(self, media):
        nodes = [node("t", "text", value="hi"), node("l", "llm")]
        edges = [Edge(id="e1", source="t", target="l", target_handle="user_message")]

        events = await collect(execute_workflow_streaming(nodes, edges, services=media.services()))

        assert events[0] == {
            "event": "workflow_start",
            "scope": "full",
            "total_nodes": 2,
            "selected_node_ids": None,
        }
        assert events[-1]["event"] == "workflow_complete"
        assert events[-1]["run"]["status"] == "success"
        assert events[-1]["run"]["successfulNodes"] == 2

        results = [e for e in events if e["event"] == "node_result"]
        assert [r["nodeId"] for r in results] == ["t", "l"]
        assert results[1]["output"] == "echo: hi"

        l_statuses = [e["status"] for e in events if e["event"] == "node_status" and e["node_id"] == "l"]
        assert l_statuses == ["idle", "running", "success"]
        assert any(e["event"] == "run_update" for e in events)

    @pytest.mark.asyncio
    async def test_node_error_event(self, media):
        nodes = [node("c", "cropImage")]
        events = await collect(execute_workflow_streaming(nodes, [], services=media.services()))

        errors = [e for e in events if e["event"] == "node_error"]
        assert errors == [{"event": "node_error", "node_id": "c", "error": "CropImage node requires an image input"}]
        assert events[-1]["event"] == "workflow_complete"
        assert events[-1]["run"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_selected_scope(self, media):
        nodes = [node("a", "text", value="x"), node("b", "text", value="y")]
        events = await collect(
            execute_workflow_streaming(nodes, [], selected_node_ids=["b"], services=media.services())
        )
        assert events[0]["scope"] == "single"
        assert events[0]["selected_node_ids"] == ["b"]
        assert {e["node_id"] for e in events if e["event"] == "node_status"} == {"b"}

    @pytest.mark.asyncio
    async def test_cycle_reported_as_workflow_error(self, media):
        nodes = [node("a", "text"), node("b", "text")]
        edges = [Edge(id="1", source="a", target="b"), Edge(id="2", source="b", target="a")]

        events = await collect(execute_workflow_streaming(nodes, edges, services=media.services()))

        assert events[-1]["event"] == "workflow_error"
        assert "Cycle detected" in events[-1]["error"]
        assert not any(e["event"] == "node_result" for e in events)

    @pytest.mark.asyncio
    async def test_empty_selection_runs_nothing(self, media):
        nodes = [node("a", "text", value="x"), node("l", "llm", userMessage="hi")]
        events = await collect(
            execute_workflow_streaming(nodes, [], selected_node_ids=[], services=media.services())
        )

        assert events[0] == {
            "event": "workflow_start",
            "scope": "selected",
            "total_nodes": 0,
            "selected_node_ids": [],
        }
        assert not any(e["event"] in ("node_status", "node_result") for e in events)
        assert events[-1]["event"] == "workflow_complete"
        assert events[-1]["run"]["status"] == "success"
        assert events[-1]["run"]["totalNodes"] == 0
        assert media.calls == []


class TestClientDisconnect:
    @pytest.mark.asyncio
    async def test_closing_stream_records_run_outcome(self, media, store):
        media.delays["hi"] = 5.0
        nodes = [node("t", "text", value="hi"), node("l", "llm")]
        edges = [Edge(id="e1", source="t", target="l", target_handle="user_message")]
        stream = execute_workflow_streaming(
            nodes, edges, services=media.services(), store=store, workflow_id="wf-1"
        )

        async for chunk in stream:
            event = json.loads(chunk[len("data: "):])
            if event == {"event": "node_status", "node_id": "l", "status": "running"}:
                break
        await asyncio.wait_for(stream.aclose(), timeout=2)

        stored = store.runs["run-1"]
        assert stored["status"] == "partial"
        assert (stored["successful_nodes"], stored["failed_nodes"]) == (1, 1)
        l_errors = [e["error"] for e in store.node_executions if e["node_id"] == "l" and e["error"]]
        assert l_errors == ["Execution cancelled"]
