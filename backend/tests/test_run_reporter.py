"""
Tests for run telemetry: status derivation, store calls and listeners.
"""

import pytest

from nodeflow.models.workflow import parse_node
from nodeflow.services.run_reporter import RunReporter, derive_run_status


def node(node_id: str, node_type: str = "text", **data):
    return parse_node({"id": node_id, "type": node_type, "data": data})


class TestDeriveRunStatus:
    @pytest.mark.parametrize(
        "successful,failed,expected",
        [
            (3, 0, "success"),
            (0, 0, "success"),
            (2, 1, "partial"),
            (0, 2, "failed"),
        ],
    )
    def test_status(self, successful, failed, expected):
        assert derive_run_status(successful, failed) == expected


class TestRunReporter:
    @pytest.mark.asyncio
    async def test_lifecycle_with_store(self, store):
        nodes = [node("a", label="First"), node("b")]
        reporter = RunReporter(scope="full", nodes=nodes, workflow_id="wf-1", store=store)

        run = await reporter.start()
        assert run.run_id == "run-1"
        assert store.runs["run-1"]["total_nodes"] == 2

        await reporter.node_started(nodes[0])
        await reporter.node_finished(nodes[0], output="ok")
        await reporter.node_started(nodes[1])
        await reporter.node_finished(nodes[1], error="boom")
        run = await reporter.complete()

        assert run.status == "partial"
        assert (run.successful_nodes, run.failed_nodes) == (1, 1)
        assert [e.status for e in run.node_results] == ["success", "failed"]
        assert run.node_results[0].node_name == "First"
        assert run.node_results[0].duration_ms is not None
        assert [e["status"] for e in store.node_executions] == ["running", "success", "running", "failed"]
        assert store.node_executions[3]["error"] == "boom"
        assert store.runs["run-1"]["status"] == "partial"

    @pytest.mark.asyncio
    async def test_rerun_of_node_replaces_entry(self):
        a = node("a")
        reporter = RunReporter(scope="single", nodes=[a])
        await reporter.start()
        await reporter.node_started(a)
        await reporter.node_finished(a, error="first try")
        await reporter.node_started(a)
        await reporter.node_finished(a, output="second try")
        run = await reporter.complete()

        assert len(run.node_results) == 1
        assert run.node_results[0].error is None
        assert run.status == "success"

    @pytest.mark.asyncio
    async def test_internal_error_forces_failed(self):
        a = node("a")
        reporter = RunReporter(scope="full", nodes=[a])
        await reporter.start()
        await reporter.node_started(a)
        await reporter.node_finished(a, output="x")
        run = await reporter.complete(error="Internal error: boom")
        assert run.status == "failed"
        assert run.error == "Internal error: boom"

    @pytest.mark.asyncio
    async def test_no_workflow_id_skips_store(self, store):
        reporter = RunReporter(scope="full", nodes=[node("a")], store=store)
        run = await reporter.start()
        await reporter.complete()
        assert store.runs == {}
        assert run.run_id  # local uuid

    @pytest.mark.asyncio
    async def test_failed_create_run_disables_persistence(self, store):
        store.fail_on = {"create_run"}
        a = node("a")
        reporter = RunReporter(scope="full", nodes=[a], workflow_id="wf-1", store=store)

        await reporter.start()
        await reporter.node_started(a)
        await reporter.node_finished(a, output="x")
        run = await reporter.complete()

        assert run.status == "success"
        assert store.node_executions == []

    @pytest.mark.asyncio
    async def test_listeners_notified_and_isolated(self, caplog):
        seen = []

        def broken(run):
            raise ValueError("listener bug")

        a = node("a")
        reporter = RunReporter(
            scope="full", nodes=[a], listeners=[broken, lambda run: seen.append(run.status)]
        )

        await reporter.start()
        await reporter.node_started(a)
        await reporter.node_finished(a, output="x")
        await reporter.complete()

        assert seen == ["running", "running", "running", "success"]
        assert "Run listener failed" in caplog.text
