# codec.py
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Optional

from .model import (
    Access,
    CacheEntry,
    CancelMode,
    CompositeAction,
    ConcurrencyPolicy,
    EventKind,
    InputSpec,
    Job,
    MatrixSpec,
    ReusableWorkflowRef,
    RunStep,
    SecretMode,
    Step,
    Trigger,
    UseStep,
    WorkflowDefinition,
)

# ---------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------
# Definitions convert to plain JSON-compatible dicts and back.
# The canonical JSON text (sorted keys, no whitespace) is what the
# workflow index snapshots and what fingerprint() hashes, so two
# resolutions of the same (path, version) are byte-identical.
# ---------------------------------------------------------------------


def dumps_stable(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def fingerprint(definition: WorkflowDefinition) -> str:
    return sha256_str(dumps_stable(definition_to_dict(definition)))


# ---------------------------------------------------------------------
# to dict
# ---------------------------------------------------------------------

def _inputs_to_dict(inputs: Dict[str, InputSpec]) -> Dict[str, Any]:
    return {
        name: {"type": spec.type, "required": spec.required, "default": spec.default}
        for name, spec in inputs.items()
    }


def step_to_dict(step: Step) -> Dict[str, Any]:
    if isinstance(step, UseStep):
        return {
            "name": step.name,
            "uses": step.uses,
            "with": dict(step.with_),
            "secrets": list(step.secrets),
            "continue_on_error": step.continue_on_error,
        }

    step_dict: Dict[str, Any] = {
        "name": step.name,
        "run": step.run,
        "env": dict(step.env),
        "secrets": list(step.secrets),
        "continue_on_error": step.continue_on_error,
    }
    if step.shell is not None:
        step_dict["shell"] = step.shell
    if step.cwd is not None:
        step_dict["cwd"] = step.cwd
    if step.cache is not None:
        step_dict["cache"] = {
            "namespace": step.cache.namespace,
            "manifests": list(step.cache.manifests),
            "paths": list(step.cache.paths),
        }
    return step_dict


def job_to_dict(job: Job) -> Dict[str, Any]:
    job_dict: Dict[str, Any] = {
        "name": job.name,
        "steps": [step_to_dict(s) for s in job.steps],
        "needs": list(job.needs),
        "fail_fast": job.fail_fast,
        "permissions": {k: v.value for k, v in job.permissions.items()},
        "secrets": list(job.secrets),
        "env": dict(job.env),
        "tolerate_upstream_failure": job.tolerate_upstream_failure,
        "continue_on_error": job.continue_on_error,
    }
    if job.runs_on is not None:
        job_dict["runs_on"] = job.runs_on
    if job.matrix is not None:
        job_dict["matrix"] = {
            "axes": {k: list(v) for k, v in job.matrix.axes.items()},
            "include": [dict(i) for i in job.matrix.include],
            "exclude": [dict(e) for e in job.matrix.exclude],
        }
    if job.uses is not None:
        job_dict["uses"] = {
            "path": job.uses.path,
            "version": job.uses.version,
            "with": dict(job.uses.with_),
            "secret_mode": job.uses.secret_mode.value,
            "secrets": list(job.uses.secrets),
        }
    return job_dict


def definition_to_dict(definition: WorkflowDefinition) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "name": definition.name,
        "path": definition.path,
        "version": definition.version,
        "triggers": [
            {"kind": t.kind.value, "branches": list(t.branches), "tags": list(t.tags)}
            for t in definition.triggers
        ],
        "permissions": {k: v.value for k, v in definition.permissions.items()},
        "inputs": _inputs_to_dict(definition.inputs),
        "secrets": list(definition.secrets),
        "jobs": {name: job_to_dict(job) for name, job in definition.jobs.items()},
    }
    if definition.concurrency is not None:
        doc["concurrency"] = {
            "group": definition.concurrency.group,
            "mode": definition.concurrency.mode.value,
        }
    return doc


def composite_to_dict(action: CompositeAction) -> Dict[str, Any]:
    return {
        "path": action.path,
        "version": action.version,
        "description": action.description,
        "inputs": _inputs_to_dict(action.inputs),
        "steps": [step_to_dict(s) for s in action.steps],
    }


# ---------------------------------------------------------------------
# from dict
# ---------------------------------------------------------------------

def _inputs_from_dict(raw: Optional[Dict[str, Any]]) -> Dict[str, InputSpec]:
    return {
        name: InputSpec(
            type=spec.get("type", "string"),
            required=bool(spec.get("required", False)),
            default=spec.get("default"),
        )
        for name, spec in (raw or {}).items()
    }


def step_from_dict(step_dict: Dict[str, Any]) -> Step:
    if "uses" in step_dict and step_dict["uses"] is not None:
        return UseStep(
            name=step_dict["name"],
            uses=step_dict["uses"],
            with_=dict(step_dict.get("with") or {}),
            secrets=tuple(step_dict.get("secrets") or ()),
            continue_on_error=bool(step_dict.get("continue_on_error", False)),
        )

    cache = None
    if step_dict.get("cache"):
        raw = step_dict["cache"]
        cache = CacheEntry(
            namespace=raw["namespace"],
            manifests=tuple(raw.get("manifests") or ()),
            paths=tuple(raw.get("paths") or ()),
        )
    return RunStep(
        name=step_dict["name"],
        run=step_dict["run"],
        shell=step_dict.get("shell"),
        env={k: str(v) for k, v in (step_dict.get("env") or {}).items()},
        secrets=tuple(step_dict.get("secrets") or ()),
        continue_on_error=bool(step_dict.get("continue_on_error", False)),
        cache=cache,
        cwd=step_dict.get("cwd"),
    )


def job_from_dict(job_dict: Dict[str, Any]) -> Job:
    matrix = None
    if job_dict.get("matrix"):
        raw = job_dict["matrix"]
        matrix = MatrixSpec(
            axes={k: tuple(v) for k, v in (raw.get("axes") or {}).items()},
            include=tuple(dict(i) for i in raw.get("include") or ()),
            exclude=tuple(dict(e) for e in raw.get("exclude") or ()),
        )

    uses = None
    if job_dict.get("uses"):
        raw = job_dict["uses"]
        uses = ReusableWorkflowRef(
            path=raw["path"],
            version=raw["version"],
            with_=dict(raw.get("with") or {}),
            secret_mode=SecretMode(raw.get("secret_mode", SecretMode.EXPLICIT.value)),
            secrets=tuple(raw.get("secrets") or ()),
        )

    return Job(
        name=job_dict["name"],
        runs_on=job_dict.get("runs_on"),
        steps=tuple(step_from_dict(s) for s in job_dict.get("steps") or ()),
        needs=tuple(job_dict.get("needs") or ()),
        matrix=matrix,
        uses=uses,
        fail_fast=bool(job_dict.get("fail_fast", True)),
        permissions={k: Access(v) for k, v in (job_dict.get("permissions") or {}).items()},
        secrets=tuple(job_dict.get("secrets") or ()),
        env={k: str(v) for k, v in (job_dict.get("env") or {}).items()},
        tolerate_upstream_failure=bool(job_dict.get("tolerate_upstream_failure", False)),
        continue_on_error=bool(job_dict.get("continue_on_error", False)),
    )


def definition_from_dict(doc: Dict[str, Any]) -> WorkflowDefinition:
    concurrency = None
    if doc.get("concurrency"):
        raw = doc["concurrency"]
        concurrency = ConcurrencyPolicy(
            group=raw["group"],
            mode=CancelMode(raw.get("mode", CancelMode.CANCEL_IN_PROGRESS.value)),
        )

    jobs: Dict[str, Job] = {}
    for name, job_dict in (doc.get("jobs") or {}).items():
        job_dict = dict(job_dict)
        job_dict.setdefault("name", name)
        jobs[name] = job_from_dict(job_dict)

    return WorkflowDefinition(
        name=doc["name"],
        jobs=jobs,
        triggers=tuple(
            Trigger(
                kind=EventKind(t["kind"]),
                branches=tuple(t.get("branches") or ()),
                tags=tuple(t.get("tags") or ()),
            )
            for t in doc.get("triggers") or ()
        ),
        permissions={k: Access(v) for k, v in (doc.get("permissions") or {}).items()},
        concurrency=concurrency,
        path=doc.get("path") or "",
        version=doc.get("version") or "",
        inputs=_inputs_from_dict(doc.get("inputs")),
        secrets=tuple(doc.get("secrets") or ()),
    )


def composite_from_dict(doc: Dict[str, Any]) -> CompositeAction:
    steps: List[Step] = [step_from_dict(s) for s in doc.get("steps") or ()]
    return CompositeAction(
        path=doc["path"],
        version=doc["version"],
        steps=tuple(steps),
        inputs=_inputs_from_dict(doc.get("inputs")),
        description=doc.get("description") or "",
    )
