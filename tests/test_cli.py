# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import json

import pytest
from click.testing import CliRunner

import cli as cli_module
from cli import cli
from conftest import FakeTransport, make_workflow
from flowmigrate.core.config import ConfigLoader
from flowmigrate.core.id_mapping import IDMappingStore
from flowmigrate.core.loader import load_workflows
from flowmigrate.core.logger import setup_logging


@pytest.fixture(autouse=True)
def quiet_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(
        "flowmigrate.core.config.default_locations", lambda: [tmp_path / "absent.yaml"]
    )
    for var in ConfigLoader.ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("FLOWMIGRATE_LOG_LEVEL", "CRITICAL")
    monkeypatch.setenv("FLOWMIGRATE_STATE_DIR", str(tmp_path / "state"))
    yield
    setup_logging(console_output=False, file_output=False)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def export_dir(tmp_path):
    directory = tmp_path / "workflows"
    directory.mkdir()
    w1 = make_workflow("1", "W1").to_dict()
    w2 = make_workflow("2", "W2", calls=["1"]).to_dict()
    (directory / "b.json").write_text(json.dumps(w2))
    (directory / "a.json").write_text(json.dumps([w1]))
    return directory


@pytest.fixture
def target_env(monkeypatch):
    monkeypatch.setenv("TARGET_N8N_URL", "https://new.example.com")
    monkeypatch.setenv("TARGET_N8N_API_KEY", "key")


def test_validate_clean_export(runner, export_dir):
    result = runner.invoke(cli, ["validate", str(export_dir)])

    assert result.exit_code == 0
    report = json.loads(result.output)
    assert report["valid"] is True
    assert report["unresolvedReferences"] == []


def test_validate_strict_fails_on_duplicates(runner, export_dir, tmp_path):
    (export_dir / "c.json").write_text(json.dumps(make_workflow("1", "Other").to_dict()))
    output = tmp_path / "report.json"

    result = runner.invoke(cli, ["validate", str(export_dir), "--strict", "-o", str(output)])

    assert result.exit_code == 1
    report = json.loads(output.read_text())
    assert report["valid"] is False
    assert report["duplicateIds"][0][0]["id"] == "1"


def test_graph_prints_order(runner, export_dir):
    result = runner.invoke(cli, ["graph", str(export_dir)])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["order"]["order"] == ["1", "2"]
    assert data["statistics"]["totalDependencies"] == 1


def test_graph_rejects_duplicates(runner, export_dir):
    (export_dir / "c.json").write_text(json.dumps(make_workflow("1", "Other").to_dict()))

    result = runner.invoke(cli, ["graph", str(export_dir)])

    assert result.exit_code == 1


def test_transfer_dry_run_needs_no_target(runner, export_dir):
    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir), "--dry-run"])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["dryRun"] is True
    assert data["order"] == ["1", "2"]


def test_transfer_without_target_fails(runner, export_dir):
    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir)])

    assert result.exit_code == 1
    assert "Target instance not configured" in result.output


def test_transfer_success(runner, export_dir, target_env, monkeypatch, tmp_path):
    destination = FakeTransport()
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: destination)

    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir), "-c", "2"])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["outcome"] == "success"
    assert data["created"] == 2
    mapping = IDMappingStore.load(tmp_path / "state" / "id-mappings.json")
    assert set(mapping.new_ids()) == set(destination.workflows)


def test_transfer_partial_failure_exit_code(runner, export_dir, target_env, monkeypatch):
    destination = FakeTransport(fail_create={"W2"})
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: destination)

    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir)])

    assert result.exit_code == 2
    assert json.loads(result.output)["outcome"] == "partial_failure"


def test_transfer_rejects_zero_concurrency(runner, export_dir):
    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir), "-c", "0"])

    assert result.exit_code == 2
    assert "concurrency" in result.output


@pytest.fixture
def source_env(monkeypatch):
    monkeypatch.setenv("SOURCE_N8N_URL", "https://old.example.com")
    monkeypatch.setenv("SOURCE_N8N_API_KEY", "key")


def test_transfer_logs_progress_events(runner, export_dir, target_env, monkeypatch, caplog):
    monkeypatch.setenv("FLOWMIGRATE_LOG_LEVEL", "INFO")
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: FakeTransport())

    result = runner.invoke(cli, ["transfer", "--source-dir", str(export_dir)])

    assert result.exit_code == 0
    messages = [r.getMessage() for r in caplog.records if r.name == "flowmigrate.cli"]
    assert "State: idle -> validating" in messages
    assert any(m.startswith("workflow_created: W1 -> dst-") for m in messages)
    assert "Transfer finished: success" in messages


def test_download_filters_by_tag(runner, source_env, monkeypatch, tmp_path):
    source = FakeTransport()
    source.seed("Billing", nodes=make_workflow("1", "Billing").nodes, tags=["prod"])
    source.seed("Scratch pad", tags=["dev"])
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: source)
    out = tmp_path / "export"

    result = runner.invoke(cli, ["download", str(out), "--tag", "prod"])

    assert result.exit_code == 0
    assert "Downloaded 1 workflows" in result.output
    assert source.calls == [("list", {"tags": "prod"})]
    assert [p.name for p in out.iterdir()] == ["Billing-dst-1.json"]
    downloaded = load_workflows(out)
    assert downloaded[0].node_count == 1


def test_download_everything_round_trips_into_validate(runner, source_env, monkeypatch, tmp_path):
    source = FakeTransport()
    source.seed("A")
    source.seed("B")
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: source)
    out = tmp_path / "export"

    result = runner.invoke(cli, ["download", str(out)])

    assert result.exit_code == 0
    assert source.calls == [("list", None)]
    assert sorted(wf.name for wf in load_workflows(out)) == ["A", "B"]


def test_download_nothing_matches(runner, source_env, monkeypatch, tmp_path):
    source = FakeTransport()
    source.seed("A", tags=["dev"])
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: source)
    out = tmp_path / "export"

    result = runner.invoke(cli, ["download", str(out), "-t", "prod"])

    assert result.exit_code == 0
    assert "No workflows to download" in result.output
    assert not out.exists()


def test_download_without_source_fails(runner, tmp_path):
    result = runner.invoke(cli, ["download", str(tmp_path / "export")])

    assert result.exit_code == 1
    assert "Source instance not configured" in result.output


def test_compare_against_target(runner, export_dir, target_env, monkeypatch):
    target = FakeTransport()
    target.seed("W1", nodes=make_workflow("1", "W1").nodes)
    target.seed("Legacy")
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: target)

    result = runner.invoke(cli, ["compare", str(export_dir)])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["inSync"] is False
    assert data["summary"] == {
        "local": 2,
        "target": 2,
        "new": 1,
        "modified": 1,
        "identical": 0,
        "targetOnly": 1,
    }
    assert data["new"][0]["name"] == "W2"
    assert data["modified"][0]["targetId"] == "dst-1"
    assert data["targetOnly"][0]["name"] == "Legacy"


def test_verify_after_transfer(runner, export_dir, target_env, monkeypatch, tmp_path):
    destination = FakeTransport()
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: destination)
    assert runner.invoke(cli, ["transfer", "--source-dir", str(export_dir)]).exit_code == 0
    destination.calls.clear()

    result = runner.invoke(cli, ["verify", str(export_dir)])

    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["passed"] is True
    assert sorted(destination.methods()) == ["get", "get"]


def test_verify_detects_missing_workflow(runner, export_dir, target_env, monkeypatch, tmp_path):
    destination = FakeTransport()
    monkeypatch.setattr(cli_module, "N8nTransport", lambda *args, **kwargs: destination)
    assert runner.invoke(cli, ["transfer", "--source-dir", str(export_dir)]).exit_code == 0
    mapping_file = tmp_path / "state" / "id-mappings.json"
    destination.workflows.pop(IDMappingStore.load(mapping_file).resolve("1"))

    result = runner.invoke(cli, ["verify", str(export_dir), "--mapping", str(mapping_file)])

    assert result.exit_code == 1
    data = json.loads(result.output)
    assert "workflow_count" in data["failingChecks"]
    assert "W1" in data["affectedWorkflows"]


def test_verify_without_mapping_file(runner, export_dir, target_env, tmp_path):
    result = runner.invoke(cli, ["verify", str(export_dir), "-m", str(tmp_path / "none.json")])

    assert result.exit_code == 1
    assert "Mapping file not found" in result.output
