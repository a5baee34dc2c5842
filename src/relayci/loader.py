# loader.py
from __future__ import annotations

import json
import re
import runpy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .codec import composite_from_dict, definition_from_dict
from .dag import build_dag, topo_levels
from .errors import DefinitionError
from .run import leg_id
from .model import (
    CancelMode,
    CompositeAction,
    EventKind,
    Job,
    SecretMode,
    UseStep,
    WorkflowDefinition,
)

# Immutable version pins: v1, v1.2, v1.2.3 or a full commit sha.
PINNED_VERSION = re.compile(r"^(v\d+(\.\d+){0,2}|[0-9a-f]{40})$")


# -------------------- Document schemas --------------------

class _Doc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class InputDoc(_Doc):
    type: Literal["string", "boolean", "number"] = "string"
    required: bool = False
    default: Any = None


class CacheDoc(_Doc):
    namespace: str
    manifests: List[str] = Field(min_length=1)
    paths: List[str] = Field(min_length=1)


class StepDoc(_Doc):
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    shell: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    continue_on_error: bool = False
    cache: Optional[CacheDoc] = None
    cwd: Optional[str] = None

    @model_validator(mode="after")
    def _run_or_uses(self) -> "StepDoc":
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.name!r} needs exactly one of 'run' or 'uses'")
        return self


class MatrixDoc(_Doc):
    axes: Dict[str, List[Any]]
    include: List[Dict[str, Any]] = Field(default_factory=list)
    exclude: List[Dict[str, Any]] = Field(default_factory=list)


class ReusableRefDoc(_Doc):
    path: str
    version: str
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    secret_mode: SecretMode = SecretMode.EXPLICIT
    secrets: List[str] = Field(default_factory=list)


class JobDoc(_Doc):
    name: Optional[str] = None
    runs_on: Optional[str] = None
    steps: List[StepDoc] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    matrix: Optional[MatrixDoc] = None
    uses: Optional[ReusableRefDoc] = None
    fail_fast: bool = True
    permissions: Dict[str, Literal["read", "write", "none"]] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    tolerate_upstream_failure: bool = False
    continue_on_error: bool = False


class TriggerDoc(_Doc):
    kind: EventKind
    branches: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class ConcurrencyDoc(_Doc):
    group: str = Field(min_length=1)
    mode: CancelMode = CancelMode.CANCEL_IN_PROGRESS


class WorkflowDoc(_Doc):
    name: str
    path: str = ""
    version: str = ""
    triggers: List[TriggerDoc] = Field(default_factory=list)
    permissions: Dict[str, Literal["read", "write", "none"]] = Field(default_factory=dict)
    concurrency: Optional[ConcurrencyDoc] = None
    inputs: Dict[str, InputDoc] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    jobs: Dict[str, JobDoc]


class CompositeDoc(_Doc):
    path: str
    version: str
    description: str = ""
    inputs: Dict[str, InputDoc] = Field(default_factory=dict)
    steps: List[StepDoc] = Field(min_length=1)


def _parse(schema: type[_Doc], raw: Mapping[str, Any], what: str) -> Dict[str, Any]:
    try:
        doc = schema.model_validate(dict(raw))
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise DefinitionError(
            DefinitionError.Kind.MISSING_REQUIRED_FIELD,
            f"invalid {what} document",
            details={"errors": problems},
        ) from e
    return doc.model_dump(mode="json", by_alias=True, exclude_none=True)


# -------------------- Semantic validation --------------------

def _check_pinned(version: str, *, job: str, ref: str) -> None:
    if not PINNED_VERSION.match(version or ""):
        raise DefinitionError(
            DefinitionError.Kind.MUTABLE_REFERENCE,
            f"reference '{ref}' must be pinned to an immutable version tag",
            job=job,
            details={"version": version},
        )


def _validate_job(definition: WorkflowDefinition, job: Job) -> None:
    if job.uses is not None and job.steps:
        raise DefinitionError(
            DefinitionError.Kind.CONFLICTING_JOB_SHAPE,
            "job both owns steps and delegates to a reusable workflow",
            job=job.name,
            details={"uses": str(job.uses)},
        )

    if job.uses is not None:
        _check_pinned(job.uses.version, job=job.name, ref=str(job.uses))
    else:
        if not job.runs_on:
            raise DefinitionError(
                DefinitionError.Kind.MISSING_REQUIRED_FIELD,
                "job has no runner target (runs_on)",
                job=job.name,
            )
        if not job.steps:
            raise DefinitionError(
                DefinitionError.Kind.MISSING_REQUIRED_FIELD,
                "job must have at least one step",
                job=job.name,
            )

    if job.matrix is not None:
        legs = job.matrix.combinations()
        if not legs:
            raise DefinitionError(
                DefinitionError.Kind.MISSING_REQUIRED_FIELD,
                "matrix expands to zero legs",
                job=job.name,
            )
        ids = [leg_id(job.name, leg) for leg in legs]
        clashing = sorted({i for i in ids if ids.count(i) > 1})
        if clashing:
            raise DefinitionError(
                DefinitionError.Kind.CONFLICTING_JOB_SHAPE,
                "matrix legs with different values share an id",
                job=job.name,
                details={"legs": clashing},
            )

    unknown = sorted(set(job.secrets) - set(definition.secrets))
    if unknown:
        raise DefinitionError(
            DefinitionError.Kind.UNKNOWN_REFERENCE,
            "job requests secrets the workflow does not declare",
            job=job.name,
            details={"secrets": unknown},
        )

    for step in job.steps:
        unknown = sorted(set(step.secrets) - set(job.secrets))
        if unknown:
            raise DefinitionError(
                DefinitionError.Kind.UNKNOWN_REFERENCE,
                "step requests secrets the job does not declare",
                job=job.name,
                step=step.name,
                details={"secrets": unknown},
            )
        if isinstance(step, UseStep) and step.is_composite:
            _check_pinned(step.target[1], job=job.name, ref=step.uses)


def validate(definition: WorkflowDefinition) -> WorkflowDefinition:
    """
    Semantic checks shared by every source (documents, python files, DSL).
    Returns the definition unchanged so it can be chained.
    """
    if not definition.jobs:
        raise DefinitionError(
            DefinitionError.Kind.MISSING_REQUIRED_FIELD,
            f"workflow '{definition.name}' defines no jobs",
        )

    for name, job in definition.jobs.items():
        if name != job.name:
            raise DefinitionError(
                DefinitionError.Kind.UNKNOWN_REFERENCE,
                f"job registered as '{name}' is named '{job.name}'",
                job=name,
            )
        _validate_job(definition, job)

    adj, indeg = build_dag({name: job.needs for name, job in definition.jobs.items()})
    topo_levels(adj, indeg)
    return definition


def validate_composite(action: CompositeAction) -> CompositeAction:
    for step in action.steps:
        if isinstance(step, UseStep) and step.is_composite:
            _check_pinned(step.target[1], job=action.path, ref=step.uses)
    return action


# -------------------- Entry points --------------------

Source = Union[Mapping[str, Any], str, Path]


def _load_python(path: Path) -> WorkflowDefinition:
    """
    The file must define either:
      - workflow() -> WorkflowDefinition
      - WORKFLOW = WorkflowDefinition(...)
    """
    module_name = f"relayci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    definition = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        definition = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        definition = globals_dict["WORKFLOW"]

    if not isinstance(definition, WorkflowDefinition):
        raise TypeError(
            "Workflow file must return/define a WorkflowDefinition. "
            "Define workflow() -> WorkflowDefinition or WORKFLOW = ...."
        )
    return definition


def _read_source(source: Source) -> Union[Dict[str, Any], WorkflowDefinition]:
    if isinstance(source, Mapping):
        return dict(source)

    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {path}")
    if path.suffix == ".json":
        return json.loads(path.read_text(encoding="utf-8"))
    if path.suffix == ".py":
        return _load_python(path)
    raise ValueError(f"Workflow must be a .json or .py file, got: {path.name}")


def load(source: Source) -> WorkflowDefinition:
    """Load and validate a workflow definition from a mapping, .json or .py file."""
    raw = _read_source(source)
    if isinstance(raw, WorkflowDefinition):
        return validate(raw)
    return validate(definition_from_dict(_parse(WorkflowDoc, raw, "workflow")))


def load_composite(source: Source) -> CompositeAction:
    raw = _read_source(source)
    if isinstance(raw, WorkflowDefinition):
        raise TypeError("expected a composite action document, got a workflow")
    return validate_composite(composite_from_dict(_parse(CompositeDoc, raw, "composite action")))
