"""Tests for the relayci command line."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from click.testing import CliRunner

from relayci.cli import build_event, cli
from relayci.model import EventKind

WORKFLOW = {
    "name": "ci",
    "triggers": [{"kind": "push", "branches": ["main"]}],
    "jobs": {
        "test": {"runs_on": "local", "steps": [{"name": "unit", "run": "echo testing", "shell": "sh"}]},
        "build": {
            "runs_on": "local",
            "needs": ["test"],
            "matrix": {"axes": {"target": ["wheel", "sdist"]}},
            "steps": [{"name": "build", "run": "echo building ${{ matrix.target }}", "shell": "sh"}],
        },
    },
}


DEPLOY = {
    "name": "deploy",
    "triggers": [{"kind": "push"}],
    "secrets": ["DEPLOY_TOKEN"],
    "jobs": {
        "ship": {
            "runs_on": "local",
            "secrets": ["DEPLOY_TOKEN"],
            "steps": [{"name": "ship", "run": "echo using $DEPLOY_TOKEN", "shell": "sh", "secrets": ["DEPLOY_TOKEN"]}],
        }
    },
}


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RELAYCI_REDIS_URL", raising=False)
    monkeypatch.delenv("RELAYCI_INDEX_DIR", raising=False)
    monkeypatch.delenv("RELAYCI_CACHE_DIR", raising=False)
    monkeypatch.delenv("RELAYCI_SECRET_PREFIX", raising=False)
    return tmp_path


def write_workflow(root: Path, doc: dict, name: str = "ci.workflow.json") -> Path:
    path = root / name
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path


class TestValidate:
    def test_valid(self, runner, project):
        write_workflow(project, WORKFLOW)
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 0
        assert "OK: ci (2 job(s), 1 trigger(s))" in result.output

    def test_cycle_reported(self, runner, project):
        doc = json.loads(json.dumps(WORKFLOW))
        doc["jobs"]["test"]["needs"] = ["build"]
        write_workflow(project, doc)
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 1
        assert "CYCLIC_DEPENDENCY" in result.output

    def test_no_workflow(self, runner, project):
        result = runner.invoke(cli, ["validate"])
        assert result.exit_code == 1
        assert "No workflow file found" in result.output

    def test_explicit_path(self, runner, project):
        path = write_workflow(project, WORKFLOW, name="other.json")
        result = runner.invoke(cli, ["validate", "--workflow", str(path)])
        assert result.exit_code == 0


class TestPlan:
    def test_stages(self, runner, project):
        write_workflow(project, WORKFLOW)
        result = runner.invoke(cli, ["plan", "--ref", "refs/heads/main"])
        assert result.exit_code == 0
        assert "stage 1: test" in result.output
        assert "stage 2: build (target=wheel), build (target=sdist)" in result.output

    def test_not_triggered(self, runner, project):
        write_workflow(project, WORKFLOW)
        result = runner.invoke(cli, ["plan", "--tag", "v1.0.0"])
        assert result.exit_code == 0
        assert "not triggered" in result.output


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
class TestRun:
    def test_success(self, runner, project):
        write_workflow(project, WORKFLOW)
        result = runner.invoke(cli, ["run", "--ref", "refs/heads/main", "--workers", "2"])
        assert result.exit_code == 0, result.output
        assert "RESULTS (SUCCEEDED)" in result.output
        assert "build (target=sdist): SUCCEEDED" in result.output

    def test_failure_exit_code(self, runner, project):
        doc = json.loads(json.dumps(WORKFLOW))
        doc["jobs"]["test"]["steps"][0]["run"] = "exit 4"
        write_workflow(project, doc)
        result = runner.invoke(cli, ["run", "--ref", "refs/heads/main"])
        assert result.exit_code == 1
        assert "build (target=wheel): SKIPPED" in result.output

    def test_secret_from_environment_is_redacted(self, runner, project, monkeypatch):
        monkeypatch.setenv("DEPLOY_TOKEN", "tok-123456")
        write_workflow(project, DEPLOY)
        result = runner.invoke(cli, ["--debug", "run", "--ref", "refs/heads/main", "--secret", "DEPLOY_TOKEN"])
        assert result.exit_code == 0, result.output
        assert "using ***" in result.output
        assert "tok-123456" not in result.output

    def test_secret_prefix_from_settings(self, runner, project, monkeypatch):
        monkeypatch.setenv("RELAYCI_SECRET_PREFIX", "CI_SECRET_")
        monkeypatch.setenv("CI_SECRET_DEPLOY_TOKEN", "tok-prefixed")
        monkeypatch.setenv("DEPLOY_TOKEN", "tok-unprefixed")
        write_workflow(project, DEPLOY)
        result = runner.invoke(cli, ["--debug", "run", "--ref", "refs/heads/main", "--secret", "DEPLOY_TOKEN"])
        assert result.exit_code == 0, result.output
        assert "using ***" in result.output
        assert "tok-" not in result.output

    def test_secret_not_named_on_command_line_is_not_exposed(self, runner, project, monkeypatch):
        monkeypatch.setenv("DEPLOY_TOKEN", "tok-123456")
        write_workflow(project, DEPLOY)
        result = runner.invoke(cli, ["run", "--ref", "refs/heads/main"])
        assert result.exit_code == 1
        assert "SECRET_NOT_FOUND" in result.output

    def test_tag_push_kind_on_branch_ref_runs_nothing(self, runner, project):
        doc = json.loads(json.dumps(WORKFLOW))
        doc["triggers"] = [{"kind": "tag_push", "tags": ["v*"]}]
        write_workflow(project, doc)
        result = runner.invoke(cli, ["run", "--event", "tag_push", "--ref", "refs/heads/feature"])
        assert result.exit_code == 0
        assert "No workflow matches" in result.output

    def test_untriggered_run_is_a_noop(self, runner, project):
        write_workflow(project, WORKFLOW)
        result = runner.invoke(cli, ["run", "--ref", "refs/heads/feature"])
        assert result.exit_code == 0
        assert "No workflow matches" in result.output


class TestBuildEvent:
    def test_tag_wins(self):
        event = build_event("push", "refs/heads/main", "v2.0.0", None, {})
        assert event.effective_kind == EventKind.TAG_PUSH
        assert event.ref == "refs/tags/v2.0.0"

    def test_tag_ref(self):
        event = build_event("push", "refs/tags/v1", None, "abc", {})
        assert event.is_tag
        assert event.sha == "abc"
