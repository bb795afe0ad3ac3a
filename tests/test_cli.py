from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from cli.main import cli


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("N8N_REPORTER", "none")
    monkeypatch.setenv("N8N_TEMPLATES_DIR", str(tmp_path / "templates"))
    return CliRunner()


def write_json(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_validate_valid_workflow(runner, tmp_path, simple_workflow) -> None:
    path = write_json(tmp_path / "flow.json", simple_workflow)

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 0
    assert "valid" in result.output


def test_validate_reports_cycle(runner, tmp_path, simple_workflow) -> None:
    simple_workflow["connections"]["HTTP"] = {"main": [[{"node": "Set", "type": "main", "index": 0}]]}
    path = write_json(tmp_path / "loop.json", simple_workflow)

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Circular dependency detected: Set -> HTTP -> Set" in result.output


def test_validate_invalid_json(runner, tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{nope", encoding="utf-8")

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Invalid JSON" in result.output


def test_validate_reports_malformed_values(runner, tmp_path, simple_workflow) -> None:
    simple_workflow["nodes"][1]["id"] = {"nested": True}
    simple_workflow["nodes"][1]["type"] = 5
    path = write_json(tmp_path / "malformed.json", simple_workflow)

    result = runner.invoke(cli, ["validate", str(path)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Node at index 1 has an invalid ID" in result.output


def test_run_skipped_only_file_exits_zero(runner, tmp_path) -> None:
    path = write_json(
        tmp_path / "skipped.json",
        [{"name": "later", "skip": True, "workflows": [{"name": "w", "templateName": "t", "isPrimary": True}]}],
    )

    result = runner.invoke(cli, ["run", str(path)])

    assert result.exit_code == 0


def test_run_invalid_case_exits_one(runner, tmp_path) -> None:
    path = write_json(tmp_path / "invalid.json", [{"name": "no workflows", "workflows": []}])

    result = runner.invoke(cli, ["run", str(path)])

    assert result.exit_code == 1


def test_run_missing_file_exits_one(runner, tmp_path) -> None:
    result = runner.invoke(cli, ["run", str(tmp_path / "absent.json")])

    assert result.exit_code == 1
    assert "Test file not found" in result.output


def test_run_directory_with_tag_filter(runner, tmp_path) -> None:
    directory = tmp_path / "suite"
    directory.mkdir()
    write_json(directory / "a.json", [{"name": "untagged", "workflows": []}])
    report = tmp_path / "report.json"

    result = runner.invoke(
        cli,
        ["run", str(directory), "--tag", "smoke", "--reporter", "json", "--report-path", str(report)],
    )

    assert result.exit_code == 0
    assert json.loads(report.read_text(encoding="utf-8"))["total"] == 0


def test_new_test_scaffold(runner, tmp_path) -> None:
    output = tmp_path / "tests" / "smoke.json"

    result = runner.invoke(cli, ["new-test", "Smoke", "--template", "webhook", "--output", str(output)])

    assert result.exit_code == 0
    [case] = json.loads(output.read_text(encoding="utf-8"))
    assert case["name"] == "Smoke"
    assert case["workflows"][0]["templateName"] == "webhook"
    assert case["workflows"][0]["isPrimary"] is True


def test_config_masks_api_key(runner, monkeypatch) -> None:
    monkeypatch.setenv("N8N_API_KEY", "super-secret-key")

    result = runner.invoke(cli, ["config", "--format", "json"])

    assert result.exit_code == 0
    assert "super-secret-key" not in result.output
    assert "***-key" in result.output
    assert '"reporter": "none"' in result.output


def test_config_table(runner) -> None:
    result = runner.invoke(cli, ["config"])

    assert result.exit_code == 0
    assert "Engine" in result.output
    assert "Resilience" in result.output
