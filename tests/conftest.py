# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import asyncio
import copy
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from flowmigrate.core.exceptions import TransportError
from flowmigrate.core.models import Workflow
from flowmigrate.core.transport.base import WorkflowTransport


def trigger_node():
    return {
        "id": "trigger",
        "name": "When Executed",
        "type": "n8n-nodes-base.executeWorkflowTrigger",
        "parameters": {},
    }


def call_node(target_id, target_name=None, locator=True):
    """Execute Workflow node calling ``target_id``"""
    if locator:
        value = {
            "__rl": True,
            "mode": "list",
            "value": target_id,
            "cachedResultName": target_name or f"workflow {target_id}",
            "cachedResultUrl": f"/workflow/{target_id}",
        }
    else:
        value = target_id
    return {
        "id": f"call-{target_id}",
        "name": f"Call {target_name or target_id}",
        "type": "n8n-nodes-base.executeWorkflow",
        "parameters": {"source": "database", "workflowId": value},
    }


def make_workflow(wf_id, name, calls=(), extra_nodes=()):
    nodes = [trigger_node()] + [call_node(target) for target in calls] + list(extra_nodes)
    return Workflow(id=str(wf_id), name=name, nodes=nodes, connections={})


class FakeTransport(WorkflowTransport):
    """In-memory destination that assigns ids ``dst-1``, ``dst-2``, ..."""

    name = "fake"

    def __init__(self, fail_create=(), fail_update=(), truncate=(), delay=0.0, slow=None):
        self.workflows = {}
        self.calls = []
        self.fail_create = set(fail_create)
        self.fail_update = set(fail_update)
        self.truncate = set(truncate)
        self.delay = delay
        # per-name delay overriding ``delay``
        self.slow = dict(slow or {})
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_id = 0

    def seed(self, name, nodes=None, tags=()):
        """Pre-existing destination workflow"""
        self._next_id += 1
        new_id = f"dst-{self._next_id}"
        self.workflows[new_id] = {
            "id": new_id,
            "name": name,
            "nodes": nodes or [],
            "connections": {},
            "tags": [{"name": tag} for tag in tags],
        }
        return new_id

    def payload_of(self, new_id):
        return self.workflows[new_id]

    def methods(self):
        return [method for method, _ in self.calls]

    async def _enter(self, name):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(self.slow.get(name, self.delay))

    async def list(self, filter=None):
        self.calls.append(("list", filter))
        workflows = [Workflow.from_dict(copy.deepcopy(wf)) for wf in self.workflows.values()]
        tag = (filter or {}).get("tags")
        return [wf for wf in workflows if wf.has_tag(tag)] if tag else workflows

    async def create(self, payload):
        self.calls.append(("create", payload["name"]))
        await self._enter(payload["name"])
        try:
            if payload["name"] in self.fail_create:
                raise TransportError(f"create {payload['name']} rejected", status_code=500)
            self._next_id += 1
            new_id = f"dst-{self._next_id}"
            self.workflows[new_id] = dict(copy.deepcopy(payload), id=new_id)
            return {"id": new_id, "name": payload["name"]}
        finally:
            self.in_flight -= 1

    async def update(self, workflow_id, payload):
        self.calls.append(("update", workflow_id))
        await self._enter(payload["name"])
        try:
            if payload["name"] in self.fail_update:
                raise TransportError(f"update {workflow_id} rejected", status_code=400)
            if workflow_id not in self.workflows:
                raise TransportError(f"workflow {workflow_id} not found", status_code=404)
            stored = dict(copy.deepcopy(payload), id=workflow_id)
            if payload["name"] in self.truncate:
                stored["nodes"] = stored["nodes"][:-1]
            self.workflows[workflow_id] = stored
            return {"id": workflow_id}
        finally:
            self.in_flight -= 1

    async def get(self, workflow_id):
        self.calls.append(("get", workflow_id))
        data = self.workflows.get(workflow_id)
        return Workflow.from_dict(copy.deepcopy(data)) if data else None


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def w1_w2():
    """W1 has no dependencies, W2 calls W1"""
    return [make_workflow("1", "W1"), make_workflow("2", "W2", calls=["1"])]


@pytest.fixture(autouse=True)
def no_file_logs(monkeypatch):
    monkeypatch.setenv("FLOWMIGRATE_NO_FILE_LOGS", "true")
