# src/relayci/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

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

Permissions = Optional[Mapping[str, Union[str, Access]]]


def _perms(permissions: Permissions) -> Dict[str, Access]:
    return {cap: Access(level) for cap, level in (permissions or {}).items()}


def _inputs(inputs: Optional[Mapping[str, Union[InputSpec, Mapping[str, Any]]]]) -> Dict[str, InputSpec]:
    out: Dict[str, InputSpec] = {}
    for name, spec in (inputs or {}).items():
        out[name] = spec if isinstance(spec, InputSpec) else InputSpec(**spec)
    return out


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    shell: str | None = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Iterable[str] = (),
    continue_on_error: bool = False,
    cache: Optional[CacheEntry] = None,
) -> RunStep:
    """Create a shell step."""
    return RunStep(
        name=name,
        run=cmd,
        shell=shell,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        secrets=tuple(secrets),
        continue_on_error=continue_on_error,
        cache=cache,
    )


def use(
    name: str,
    uses: str,
    *,
    with_: Optional[Dict[str, Any]] = None,
    secrets: Iterable[str] = (),
    continue_on_error: bool = False,
) -> UseStep:
    """Reference a composite bundle ("path@version") or a registered action ("publish")."""
    return UseStep(
        name=name,
        uses=uses,
        with_=dict(with_ or {}),
        secrets=tuple(secrets),
        continue_on_error=continue_on_error,
    )


def cache(namespace: str, *, manifests: Iterable[str], paths: Iterable[str]) -> CacheEntry:
    return CacheEntry(namespace=namespace, manifests=tuple(manifests), paths=tuple(paths))


# ---------------------------------------------------------------------
# Job helpers
# ---------------------------------------------------------------------

def matrix(
    *,
    include: Optional[List[Dict[str, Any]]] = None,
    exclude: Optional[List[Dict[str, Any]]] = None,
    **axes: Iterable[Any],
) -> MatrixSpec:
    """
    Example:
        matrix(os=["linux", "mac"], py=["3.11", "3.12"], exclude=[{"os": "mac", "py": "3.11"}])
    """
    return MatrixSpec(
        axes={name: tuple(values) for name, values in axes.items()},
        include=tuple(dict(i) for i in include or ()),
        exclude=tuple(dict(e) for e in exclude or ()),
    )


def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    runs_on: str = "local",
    needs: Optional[List[str]] = None,
    matrix: Optional[MatrixSpec] = None,
    fail_fast: bool = True,
    permissions: Permissions = None,
    secrets: Iterable[str] = (),
    env: Optional[Dict[str, str]] = None,
    tolerate_upstream_failure: bool = False,
    continue_on_error: bool = False,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    return Job(
        name=name,
        runs_on=runs_on,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        matrix=matrix,
        fail_fast=fail_fast,
        permissions=_perms(permissions),
        secrets=tuple(secrets),
        # force values to str for stable hashing + env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        tolerate_upstream_failure=tolerate_upstream_failure,
        continue_on_error=continue_on_error,
    )


def reusable(
    name: str,
    ref: str,
    *,
    with_: Optional[Dict[str, Any]] = None,
    secrets: Union[str, Iterable[str]] = (),
    needs: Optional[List[str]] = None,
    matrix: Optional[MatrixSpec] = None,
    permissions: Permissions = None,
    tolerate_upstream_failure: bool = False,
    continue_on_error: bool = False,
) -> Job:
    """
    A job delegating to a reusable workflow pinned as "path@version".
    secrets="inherit" forwards every caller secret; otherwise name them.
    """
    path, sep, version = ref.rpartition("@")
    if not sep or not path:
        raise ValueError(f"reusable({name!r}): ref must look like 'path@version', got {ref!r}")

    if secrets == "inherit":
        mode, names = SecretMode.INHERIT, ()
    else:
        mode, names = SecretMode.EXPLICIT, tuple(secrets)

    return Job(
        name=name,
        uses=ReusableWorkflowRef(
            path=path,
            version=version,
            with_=dict(with_ or {}),
            secret_mode=mode,
            secrets=names,
        ),
        needs=tuple(needs or ()),
        matrix=matrix,
        permissions=_perms(permissions),
        tolerate_upstream_failure=tolerate_upstream_failure,
        continue_on_error=continue_on_error,
    )


# ---------------------------------------------------------------------
# Triggers + concurrency
# ---------------------------------------------------------------------

def on_push(*branches: str) -> Trigger:
    return Trigger(EventKind.PUSH, branches=branches)


def on_pull_request(*branches: str) -> Trigger:
    return Trigger(EventKind.PULL_REQUEST, branches=branches)


def on_tag(*tags: str) -> Trigger:
    return Trigger(EventKind.TAG_PUSH, tags=tags)


def on_manual() -> Trigger:
    return Trigger(EventKind.MANUAL)


def on_call() -> Trigger:
    return Trigger(EventKind.WORKFLOW_CALL)


def concurrency(group: str, *, queue: bool = False) -> ConcurrencyPolicy:
    return ConcurrencyPolicy(group=group, mode=CancelMode.QUEUE if queue else CancelMode.CANCEL_IN_PROGRESS)


# ---------------------------------------------------------------------
# Workflow / bundle helpers (single-file story)
# ---------------------------------------------------------------------

def wf(
    name: str,
    *jobs: Job,
    on: Iterable[Trigger] = (),
    permissions: Permissions = None,
    concurrency: Optional[ConcurrencyPolicy] = None,
    inputs: Optional[Mapping[str, Any]] = None,
    secrets: Iterable[str] = (),
    path: str = "",
    version: str = "",
) -> WorkflowDefinition:
    """
    Workflow definition helper. Named `wf` so a workflow file can still
    define its own `def workflow(): return wf(...)`.

        from relayci.dsl import wf, job, sh, on_push

        def workflow():
            return wf(
                "ci",
                job("test", sh("pytest", "pytest -q")),
                on=[on_push("main")],
            )
    """
    by_name: Dict[str, Job] = {}
    for j in jobs:
        if j.name in by_name:
            raise ValueError(f"wf({name!r}): duplicate job name {j.name!r}")
        by_name[j.name] = j

    return WorkflowDefinition(
        name=name,
        jobs=by_name,
        triggers=tuple(on),
        permissions=_perms(permissions),
        concurrency=concurrency,
        path=path,
        version=version,
        inputs=_inputs(inputs),
        secrets=tuple(secrets),
    )


def composite(
    ref: str,
    *steps: Step,
    inputs: Optional[Mapping[str, Any]] = None,
    description: str = "",
) -> CompositeAction:
    """A composite bundle published as "path@version"."""
    path, sep, version = ref.rpartition("@")
    if not sep or not path:
        raise ValueError(f"composite: ref must look like 'path@version', got {ref!r}")
    if not steps:
        raise ValueError(f"composite({ref!r}) must have at least one step")
    return CompositeAction(
        path=path,
        version=version,
        steps=tuple(steps),
        inputs=_inputs(inputs),
        description=description,
    )
