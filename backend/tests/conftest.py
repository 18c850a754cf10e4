"""
Shared fixtures: an in-memory run store and fake media collaborators.
"""

import asyncio
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from nodeflow.services.node_executor import MediaServices
from nodeflow.services.run_store import RunStore


class FakeMedia:
    """
    Media collaborators that succeed instantly with deterministic URLs.

    ``errors`` maps an operation name to the error its (value, error) tuple
    should carry; ``delays`` maps a URL or user message to a sleep in seconds.
    """

    def __init__(self):
        self.image_size = (200, 100)
        self.duration = 10.0
        self.errors: dict[str, str] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple] = []

    async def _maybe_sleep(self, key: str) -> None:
        delay = self.delays.get(key)
        if delay:
            await asyncio.sleep(delay)

    async def probe_image_size(self, url: str) -> tuple[int, int]:
        self.calls.append(("probe_image_size", url))
        return self.image_size

    async def crop_image(self, url, x, y, width, height):
        self.calls.append(("crop_image", url, x, y, width, height))
        await self._maybe_sleep(url)
        if "crop_image" in self.errors:
            return None, self.errors["crop_image"]
        return f"{url}#crop={x},{y},{width},{height}", None

    async def probe_video_duration(self, url: str) -> float:
        self.calls.append(("probe_video_duration", url))
        return self.duration

    async def extract_frame(self, url, seek_time):
        self.calls.append(("extract_frame", url, seek_time))
        await self._maybe_sleep(url)
        if "extract_frame" in self.errors:
            return None, self.errors["extract_frame"]
        return f"{url}#t={seek_time}", None

    async def llm_complete(self, system_prompt, user_message, image_urls, model):
        self.calls.append(("llm_complete", system_prompt, user_message, list(image_urls), model))
        await self._maybe_sleep(user_message)
        if "llm_complete" in self.errors:
            return None, self.errors["llm_complete"]
        return f"echo: {user_message}", None

    def services(self) -> MediaServices:
        return MediaServices(
            probe_image_size=self.probe_image_size,
            crop_image=self.crop_image,
            probe_video_duration=self.probe_video_duration,
            extract_frame=self.extract_frame,
            llm_complete=self.llm_complete,
        )


class FakeRunStore(RunStore):
    """In-memory RunStore. Methods listed in ``fail_on`` raise RuntimeError."""

    def __init__(self):
        self.workflows: dict[str, dict[str, Any]] = {}
        self.runs: dict[str, dict[str, Any]] = {}
        self.node_executions: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()

    def _check(self, method: str) -> None:
        if method in self.fail_on:
            raise RuntimeError(f"{method} unavailable")

    def create_run(self, workflow_id, node_count, scope="full", selected_node_ids=None):
        self._check("create_run")
        run_id = f"run-{len(self.runs) + 1}"
        self.runs[run_id] = {
            "id": run_id,
            "workflow_id": workflow_id,
            "status": "running",
            "scope": scope,
            "total_nodes": node_count,
            "selected_node_ids": selected_node_ids,
            "started_at": datetime.now(timezone.utc).isoformat(),
        }
        return run_id

    def update_node_execution(
        self, run_id, node_id, node_type, node_name, status, output=None, error=None, duration_ms=None
    ):
        self._check("update_node_execution")
        self.node_executions.append({
            "run_id": run_id,
            "node_id": node_id,
            "node_type": node_type,
            "node_name": node_name,
            "status": status,
            "output": output,
            "error": error,
            "duration_ms": duration_ms,
        })

    def complete_run(
        self, run_id, final_status, successful_nodes=None, failed_nodes=None, duration_ms=None, error=None
    ):
        self._check("complete_run")
        self.runs[run_id].update({
            "status": final_status,
            "successful_nodes": successful_nodes,
            "failed_nodes": failed_nodes,
            "duration_ms": duration_ms,
            "error": error,
        })

    def get_run(self, run_id) -> Optional[dict[str, Any]]:
        return self.runs.get(run_id)

    def get_workflow(self, workflow_id):
        wf = self.workflows.get(workflow_id)
        if wf is None:
            return None
        past_runs = [r for r in self.runs.values() if r["workflow_id"] == workflow_id]
        return {**wf, "past_runs": list(reversed(past_runs))[:10]}

    def list_workflows(self, user_id):
        rows = []
        for wf in self.workflows.values():
            if wf["user_id"] != user_id:
                continue
            runs = [r for r in self.runs.values() if r["workflow_id"] == wf["id"]]
            rows.append({**wf, "latest_run": runs[-1] if runs else None})
        return rows

    def create_workflow(self, user_id, name, content):
        now = datetime.now(timezone.utc).isoformat()
        wf = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "name": name,
            "content": content,
            "created_at": now,
            "updated_at": now,
        }
        self.workflows[wf["id"]] = wf
        return wf

    def update_workflow(self, workflow_id, fields):
        self.workflows[workflow_id].update(fields)
        return self.workflows[workflow_id]

    def delete_workflow(self, workflow_id):
        self.workflows.pop(workflow_id, None)


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def store() -> FakeRunStore:
    return FakeRunStore()


@pytest.fixture(autouse=True)
def _engine_env(monkeypatch):
    """Keep scheduler limits deterministic regardless of the developer's .env."""
    monkeypatch.delenv("NODEFLOW_NODE_TIMEOUT_SECONDS", raising=False)
    monkeypatch.delenv("NODEFLOW_MAX_CONCURRENT_NODES", raising=False)
    monkeypatch.delenv("NODEFLOW_DEFAULT_LLM_MODEL", raising=False)
