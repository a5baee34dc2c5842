"""Tests for reusable workflow invocation (nested runs)."""

from __future__ import annotations

from dataclasses import replace

import pytest
from conftest import FakeRuntime

from relayci.codec import fingerprint
from relayci.dsl import job, on_call, on_push, reusable, sh, wf
from relayci.errors import IndexConflict, InvocationError
from relayci.model import Access, Event, EventKind
from relayci.planner import RunPlanner
from relayci.registry import WorkflowIndex
from relayci.run import JobStatus, RunStatus
from relayci.secrets import DictVault

PUSH = Event(EventKind.PUSH, "refs/heads/main", sha="c0ffee")


def deploy_v1(command: str = "deploy ${{ inputs.env }}"):
    return wf(
        "deploy",
        job("ship", sh("ship", command, secrets=["TOKEN"]), secrets=["TOKEN"], permissions={"packages": "write"}),
        on=[on_call()],
        inputs={"env": {"required": True}, "dry_run": {"type": "boolean", "default": False}},
        secrets=["TOKEN"],
        path="org/deploy",
        version="v1",
    )


def caller(**ref_kwargs):
    ref_kwargs.setdefault("with_", {"env": "prod"})
    ref_kwargs.setdefault("secrets", ["TOKEN"])
    version = ref_kwargs.pop("version", "v1")
    return wf(
        "ci",
        reusable("deploy", f"org/deploy@{version}", **ref_kwargs),
        job("notify", sh("notify", "echo done"), needs=["deploy"]),
        on=[on_push()],
        permissions={"contents": "read"},
        secrets=["TOKEN", "SLACK"],
    )


@pytest.fixture()
def workflows() -> WorkflowIndex:
    index = WorkflowIndex()
    index.publish(deploy_v1())
    return index


def _planner(workflows: WorkflowIndex, **kw) -> RunPlanner:
    return RunPlanner(workflows=workflows, vault=DictVault({"TOKEN": "t0ken", "SLACK": "sl4ck"}), **kw)


class TestInvocation:
    def test_nested_run_built_with_bound_inputs(self, workflows: WorkflowIndex):
        run = _planner(workflows).create_run(caller(), PUSH)
        inst = run.jobs["deploy"]

        assert inst.nested is not None
        nested = inst.nested
        assert nested.depth == 1
        assert nested.parent is run
        assert nested.inputs == {"env": "prod", "dry_run": False}
        assert nested.jobs["ship"].steps[0].run == "deploy prod"

    def test_pinned_version_is_immutable(self, workflows: WorkflowIndex):
        planner = _planner(workflows)
        first = planner.create_run(caller(), PUSH).jobs["deploy"].nested.definition
        snapshot = workflows.snapshot("org/deploy", "v1")

        workflows.publish(replace(deploy_v1("deploy --fast ${{ inputs.env }}"), version="v2"))

        second = planner.create_run(caller(), PUSH).jobs["deploy"].nested.definition
        assert workflows.snapshot("org/deploy", "v1") == snapshot
        assert fingerprint(second) == fingerprint(first)
        assert second.jobs["ship"].steps[0].run == "deploy ${{ inputs.env }}"

    def test_version_cannot_be_overwritten(self, workflows: WorkflowIndex):
        with pytest.raises(IndexConflict):
            workflows.publish(deploy_v1("rm -rf /"))

    def test_version_not_found(self, workflows: WorkflowIndex):
        run = _planner(workflows).create_run(caller(version="v9"), PUSH)
        error = run.jobs["deploy"].error
        assert run.jobs["deploy"].status == JobStatus.FAILED
        assert error.kind == InvocationError.Kind.VERSION_NOT_FOUND

    def test_required_input_missing(self, workflows: WorkflowIndex):
        run = _planner(workflows).create_run(caller(with_={}), PUSH)
        error = run.jobs["deploy"].error
        assert error.kind == InvocationError.Kind.REQUIRED_INPUT_MISSING
        assert error.details["missing"] == ["env"]

    def test_mistyped_input(self, workflows: WorkflowIndex):
        run = _planner(workflows).create_run(caller(with_={"env": "prod", "dry_run": "maybe"}), PUSH)
        assert run.jobs["deploy"].error.kind == InvocationError.Kind.INPUT_MISMATCH

    def test_required_secret_not_passed(self, workflows: WorkflowIndex):
        run = _planner(workflows).create_run(caller(secrets=[]), PUSH)
        error = run.jobs["deploy"].error
        assert error.kind == InvocationError.Kind.SECRET_NOT_INHERITED
        assert error.details["secrets"] == ["TOKEN"]

    def test_explicit_secrets_are_narrowed(self, workflows: WorkflowIndex):
        nested = _planner(workflows).create_run(caller(), PUSH).jobs["deploy"].nested
        assert nested.secrets.names == frozenset({"TOKEN"})

    def test_inherit_passes_every_caller_secret(self, workflows: WorkflowIndex):
        nested = _planner(workflows).create_run(caller(secrets="inherit"), PUSH).jobs["deploy"].nested
        assert nested.secrets.names == frozenset({"TOKEN", "SLACK"})

    def test_permissions_capped_by_caller(self, workflows: WorkflowIndex):
        nested = _planner(workflows).create_run(caller(), PUSH).jobs["deploy"].nested
        # the nested job asks for packages: write, the caller only grants contents: read
        assert nested.jobs["ship"].permissions == {"packages": Access.NONE}

    def test_nesting_limit(self, workflows: WorkflowIndex):
        run = _planner(workflows, max_nesting=0).create_run(caller(), PUSH)
        assert run.jobs["deploy"].error.kind == InvocationError.Kind.NESTING_TOO_DEEP


class TestNestedExecution:
    def test_nested_failure_fails_invoking_job(self, workflows: WorkflowIndex, make_scheduler):
        runtime = FakeRuntime({"deploy": 1})
        run = _planner(workflows).create_run(caller(), PUSH)
        status = make_scheduler(runtime).schedule(run)

        assert status == RunStatus.FAILED
        assert run.jobs["deploy"].status == JobStatus.FAILED
        assert run.jobs["deploy"].nested.status == RunStatus.FAILED
        assert run.jobs["notify"].status == JobStatus.SKIPPED
        assert runtime.commands == ["deploy prod"]

    def test_nested_success(self, workflows: WorkflowIndex, make_scheduler):
        runtime = FakeRuntime()
        run = _planner(workflows).create_run(caller(), PUSH)
        assert make_scheduler(runtime).schedule(run) == RunStatus.SUCCEEDED
        assert runtime.commands == ["deploy prod", "echo done"]
        # the nested step saw only the secret it declared
        assert runtime.calls[0]["env"] == {"TOKEN": "t0ken"}
