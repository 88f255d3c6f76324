# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import json

import pytest

from flowmigrate.core.exceptions import MigrationError
from flowmigrate.core.loader import load_workflows, save_workflow, workflow_filename
from flowmigrate.core.models import Workflow


def test_loads_single_and_list_files_sorted(tmp_path):
    (tmp_path / "2-second.json").write_text(json.dumps({"id": 2, "name": "B"}))
    (tmp_path / "1-first.json").write_text(
        json.dumps([{"id": "a", "name": "A1"}, {"id": "b", "name": "A2"}])
    )
    (tmp_path / "notes.txt").write_text("ignored")

    workflows = load_workflows(tmp_path)

    assert [wf.name for wf in workflows] == ["A1", "A2", "B"]
    assert workflows[2].id == "2"


def test_missing_directory(tmp_path):
    with pytest.raises(MigrationError, match="not found"):
        load_workflows(tmp_path / "nope")


def test_invalid_json(tmp_path):
    (tmp_path / "bad.json").write_text("{")

    with pytest.raises(MigrationError, match="Cannot read"):
        load_workflows(tmp_path)


def test_workflow_without_id(tmp_path):
    (tmp_path / "noid.json").write_text(json.dumps({"name": "Nameless id"}))

    with pytest.raises(MigrationError, match="Invalid workflow"):
        load_workflows(tmp_path)


def test_upload_payload_keeps_api_fields_only():
    workflow = Workflow.from_dict(
        {
            "id": 5,
            "name": "A",
            "nodes": [],
            "connections": {},
            "settings": {"executionOrder": "v1"},
            "active": True,
            "tags": [{"name": "prod"}],
            "versionId": "abc",
        }
    )

    payload = workflow.to_upload_payload()

    assert payload == {
        "name": "A",
        "nodes": [],
        "connections": {},
        "settings": {"executionOrder": "v1"},
    }
    assert workflow.to_dict()["versionId"] == "abc"


def test_saved_workflow_loads_back(tmp_path):
    workflow = Workflow.from_dict(
        {"id": "7", "name": "Scratch pad / v2", "nodes": [{"id": "n"}], "tags": [{"name": "Prod"}]}
    )

    path = save_workflow(workflow, tmp_path)

    assert path.name == "Scratch_pad_v2-7.json"
    assert workflow_filename(workflow) == path.name
    assert load_workflows(tmp_path) == [workflow]


def test_tag_matching_is_case_insensitive():
    workflow = Workflow.from_dict({"id": "1", "name": "A", "tags": [{"name": "Prod"}, "billing"]})

    assert workflow.tag_names == ["Prod", "billing"]
    assert workflow.has_tag("prod")
    assert workflow.has_tag("BILLING")
    assert not workflow.has_tag("dev")
