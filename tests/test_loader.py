"""Tests for loading and validating workflow definitions."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from relayci.errors import DefinitionError
from relayci.loader import load, load_composite
from relayci.model import Access, CancelMode, EventKind, RunStep, SecretMode, UseStep


def _doc(**jobs):
    return {"name": "ci", "triggers": [{"kind": "push"}], "jobs": jobs}


def _job(*steps, **kw):
    job = {"runs_on": "local", "steps": list(steps) or [{"name": "s", "run": "true"}]}
    job.update(kw)
    return job


class TestLoadDocument:
    def test_full_document(self):
        definition = load(
            {
                "name": "ci",
                "triggers": [{"kind": "push", "branches": ["main"]}, {"kind": "tag_push", "tags": ["v*"]}],
                "permissions": {"contents": "read"},
                "concurrency": {"group": "ci-${{ ref }}", "mode": "queue"},
                "secrets": ["NPM_TOKEN"],
                "jobs": {
                    "test": {
                        "runs_on": "docker://node:20",
                        "matrix": {"axes": {"node": [18, 20]}},
                        "steps": [
                            {"name": "install", "run": "npm ci", "shell": "bash",
                             "cache": {"namespace": "npm", "manifests": ["package-lock.json"], "paths": ["node_modules"]}},
                            {"name": "setup", "uses": "org/setup-node@v1", "with": {"version": "${{ matrix.node }}"}},
                        ],
                    },
                    "release": {
                        "needs": ["test"],
                        "permissions": {"packages": "write"},
                        "uses": {"path": "org/release", "version": "v2.1", "secret_mode": "inherit"},
                    },
                },
            }
        )

        assert definition.name == "ci"
        assert [t.kind for t in definition.triggers] == [EventKind.PUSH, EventKind.TAG_PUSH]
        assert definition.concurrency.mode == CancelMode.QUEUE

        test = definition.jobs["test"]
        assert isinstance(test.steps[0], RunStep)
        assert test.steps[0].cache.namespace == "npm"
        assert isinstance(test.steps[1], UseStep)
        assert test.steps[1].with_ == {"version": "${{ matrix.node }}"}
        assert test.matrix.axes == {"node": (18, 20)}

        release = definition.jobs["release"]
        assert release.needs == ("test",)
        assert release.uses.secret_mode == SecretMode.INHERIT
        assert release.permissions == {"packages": Access.WRITE}

    def test_json_file(self, tmp_path: Path):
        path = tmp_path / "ci.workflow.json"
        path.write_text(json.dumps(_doc(test=_job())), encoding="utf-8")
        assert list(load(path).jobs) == ["test"]

    def test_python_file(self, tmp_path: Path):
        path = tmp_path / "ci_workflow.py"
        path.write_text(
            "from relayci.dsl import wf, job, sh, on_push\n"
            "\n"
            "def workflow():\n"
            "    return wf('ci', job('lint', sh('ruff', 'ruff check .')), on=[on_push('main')])\n",
            encoding="utf-8",
        )
        definition = load(path)
        assert definition.jobs["lint"].steps[0].run == "ruff check ."

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load(tmp_path / "nope.json")


class TestDefinitionErrors:
    def _kind(self, doc):
        with pytest.raises(DefinitionError) as exc:
            load(doc)
        return exc.value.kind

    def test_matrix_legs_with_clashing_ids(self):
        doc = _doc(test=_job(matrix={"axes": {"n": [1, "1"]}}))
        assert self._kind(doc) == DefinitionError.Kind.CONFLICTING_JOB_SHAPE

    def test_schema_violation_is_missing_field(self):
        # step with neither run nor uses
        assert self._kind(_doc(test=_job({"name": "empty"}))) == DefinitionError.Kind.MISSING_REQUIRED_FIELD

    def test_unknown_key_rejected(self):
        assert self._kind(_doc(test=_job(runs_in="local"))) == DefinitionError.Kind.MISSING_REQUIRED_FIELD

    def test_missing_runs_on(self):
        doc = _doc(test={"steps": [{"name": "s", "run": "true"}]})
        assert self._kind(doc) == DefinitionError.Kind.MISSING_REQUIRED_FIELD

    def test_cycle(self):
        doc = _doc(a=_job(needs=["b"]), b=_job(needs=["a"]))
        with pytest.raises(DefinitionError) as exc:
            load(doc)
        assert exc.value.kind == DefinitionError.Kind.CYCLIC_DEPENDENCY
        assert exc.value.details["stuck"] == ["a", "b"]

    def test_unknown_need(self):
        assert self._kind(_doc(a=_job(needs=["ghost"]))) == DefinitionError.Kind.UNKNOWN_REFERENCE

    def test_steps_and_uses_conflict(self):
        doc = _doc(deploy=_job(uses={"path": "org/deploy", "version": "v1"}))
        assert self._kind(doc) == DefinitionError.Kind.CONFLICTING_JOB_SHAPE

    def test_branch_reference_is_mutable(self):
        doc = _doc(deploy={"uses": {"path": "org/deploy", "version": "main"}})
        assert self._kind(doc) == DefinitionError.Kind.MUTABLE_REFERENCE

    def test_commit_sha_is_pinned(self):
        doc = _doc(deploy={"uses": {"path": "org/deploy", "version": "a" * 40}})
        assert load(doc).jobs["deploy"].uses.version == "a" * 40

    def test_composite_step_must_be_pinned(self):
        doc = _doc(test=_job({"name": "setup", "uses": "org/setup@latest"}))
        assert self._kind(doc) == DefinitionError.Kind.MUTABLE_REFERENCE

    def test_step_secret_outside_job(self):
        doc = _doc(test=_job({"name": "s", "run": "true", "secrets": ["TOKEN"]}))
        doc["secrets"] = ["TOKEN"]
        with pytest.raises(DefinitionError) as exc:
            load(doc)
        assert exc.value.kind == DefinitionError.Kind.UNKNOWN_REFERENCE
        assert exc.value.step == "s"

    def test_empty_matrix(self):
        doc = _doc(test=_job(matrix={"axes": {"os": []}}))
        assert self._kind(doc) == DefinitionError.Kind.MISSING_REQUIRED_FIELD

    def test_error_renders_kind_and_context(self):
        with pytest.raises(DefinitionError) as exc:
            load(_doc(a=_job(needs=["ghost"])))
        text = str(exc.value)
        assert text.startswith("DefinitionError.UNKNOWN_REFERENCE:")
        assert "job=a" in text


class TestLoadComposite:
    def test_composite_document(self):
        action = load_composite(
            {
                "path": "org/setup-node",
                "version": "v1",
                "inputs": {"node_version": {"type": "string", "required": True}},
                "steps": [{"name": "install", "run": "nvm install ${{ inputs.node_version }}", "shell": "bash"}],
            }
        )
        assert action.inputs["node_version"].required is True
        assert action.steps[0].shell == "bash"

    def test_composite_needs_steps(self):
        with pytest.raises(DefinitionError):
            load_composite({"path": "org/empty", "version": "v1", "steps": []})
