# model.py
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------
# Events + triggers
# ---------------------------------------------------------------------

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG_PUSH = "tag_push"
    MANUAL = "manual"
    SCHEDULE = "schedule"
    WORKFLOW_CALL = "workflow_call"


@dataclass(frozen=True)
class Event:
    """What the event source delivers: {kind, ref, is_tag} (+ optional sha/inputs)."""
    kind: EventKind
    ref: str
    is_tag: bool = False
    sha: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def on_tag_ref(self) -> bool:
        return self.is_tag or self.ref.startswith("refs/tags/")

    @property
    def effective_kind(self) -> EventKind:
        # a push of a tag ref is a tag push
        if self.kind == EventKind.PUSH and self.on_tag_ref:
            return EventKind.TAG_PUSH
        return self.kind

    @property
    def branch(self) -> Optional[str]:
        if self.on_tag_ref:
            return None
        return _strip_prefix(self.ref, "refs/heads/")

    @property
    def tag(self) -> Optional[str]:
        if not self.on_tag_ref:
            return None
        return _strip_prefix(self.ref, "refs/tags/")


def _strip_prefix(ref: str, prefix: str) -> str:
    return ref[len(prefix):] if ref.startswith(prefix) else ref


@dataclass(frozen=True)
class Trigger:
    """
    An event kind plus branch/tag glob filters.
    Empty filters match any branch (or any tag).
    """
    kind: EventKind
    branches: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()


# ---------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------

class Access(str, Enum):
    NONE = "none"
    READ = "read"
    WRITE = "write"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]


_ACCESS_RANK = {Access.NONE: 0, Access.READ: 1, Access.WRITE: 2}


def cap_permissions(perms: Dict[str, Access], ceiling: Optional[Dict[str, Access]]) -> Dict[str, Access]:
    """Lower every capability to at most what `ceiling` grants (None = no ceiling)."""
    if ceiling is None:
        return dict(perms)
    out: Dict[str, Access] = {}
    for cap, access in perms.items():
        limit = ceiling.get(cap, Access.NONE)
        out[cap] = access if access.rank <= limit.rank else limit
    return out


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class InputSpec:
    """A declared input of a composite action or workflow_call definition."""
    type: str = "string"  # string | boolean | number
    required: bool = False
    default: Any = None


@dataclass(frozen=True)
class CacheEntry:
    """
    namespace: keeps unrelated caches apart (e.g. "npm", "pip")
    manifests: files whose content is fingerprinted into the key (lockfiles)
    paths:     files/dirs restored before the step and saved after it succeeds
    """
    namespace: str
    manifests: Tuple[str, ...]
    paths: Tuple[str, ...]


@dataclass(frozen=True)
class RunStep:
    """An opaque command run by an explicit shell."""
    name: str
    run: str
    shell: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    secrets: Tuple[str, ...] = ()
    continue_on_error: bool = False
    cache: Optional[CacheEntry] = None
    cwd: Optional[str] = None


@dataclass(frozen=True)
class UseStep:
    """
    Reference to a composite bundle ("path@version") or to a registered
    action by bare name (e.g. "publish").
    """
    name: str
    uses: str
    with_: Dict[str, Any] = field(default_factory=dict)
    secrets: Tuple[str, ...] = ()
    continue_on_error: bool = False

    @property
    def is_composite(self) -> bool:
        return "@" in self.uses

    @property
    def target(self) -> Tuple[str, str]:
        path, _, version = self.uses.rpartition("@")
        return path, version


Step = Union[RunStep, UseStep]


@dataclass(frozen=True)
class CompositeAction:
    path: str
    version: str
    steps: Tuple[Step, ...]
    inputs: Dict[str, InputSpec] = field(default_factory=dict)
    description: str = ""


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

class SecretMode(str, Enum):
    INHERIT = "inherit"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ReusableWorkflowRef:
    path: str
    version: str
    with_: Dict[str, Any] = field(default_factory=dict)
    secret_mode: SecretMode = SecretMode.EXPLICIT
    secrets: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return self.path, self.version

    def __str__(self) -> str:
        return f"{self.path}@{self.version}"


@dataclass(frozen=True)
class MatrixSpec:
    axes: Dict[str, Tuple[Any, ...]]
    include: Tuple[Dict[str, Any], ...] = ()
    exclude: Tuple[Dict[str, Any], ...] = ()

    def combinations(self) -> List[Dict[str, Any]]:
        """
        Cartesian product in axis declaration order, minus `exclude`
        matches, plus `include` legs that are not already present.
        Repeated axis values collapse into one leg.
        """
        names = list(self.axes)
        legs: List[Dict[str, Any]] = []
        if names:
            for values in itertools.product(*(self.axes[n] for n in names)):
                legs.append(dict(zip(names, values)))

        def _matches(leg: Dict[str, Any], pattern: Dict[str, Any]) -> bool:
            return all(leg.get(k) == v for k, v in pattern.items())

        unique: List[Dict[str, Any]] = []
        for leg in legs:
            if leg not in unique and not any(_matches(leg, ex) for ex in self.exclude):
                unique.append(leg)
        for extra in self.include:
            if extra not in unique:
                unique.append(dict(extra))
        return unique


class CancelMode(str, Enum):
    CANCEL_IN_PROGRESS = "cancel_in_progress"
    QUEUE = "queue"


@dataclass(frozen=True)
class ConcurrencyPolicy:
    group: str
    mode: CancelMode = CancelMode.CANCEL_IN_PROGRESS


@dataclass(frozen=True)
class Job:
    """
    A CI job: either owns steps (run on `runs_on`) or delegates to a
    reusable workflow via `uses`. Never both.
    """
    name: str
    runs_on: Optional[str] = None
    steps: Tuple[Step, ...] = ()
    needs: Tuple[str, ...] = ()
    matrix: Optional[MatrixSpec] = None
    uses: Optional[ReusableWorkflowRef] = None
    fail_fast: bool = True
    permissions: Dict[str, Access] = field(default_factory=dict)
    secrets: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)

    # eligible once upstreams are terminal in any state
    tolerate_upstream_failure: bool = False
    # failure of this job does not fail the run
    continue_on_error: bool = False


# ---------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    jobs: Dict[str, Job]
    triggers: Tuple[Trigger, ...] = ()
    permissions: Dict[str, Access] = field(default_factory=dict)
    concurrency: Optional[ConcurrencyPolicy] = None
    path: str = ""
    version: str = ""

    # workflow_call interface
    inputs: Dict[str, InputSpec] = field(default_factory=dict)
    # names this workflow may use; for workflow_call, the ones a caller must pass
    secrets: Tuple[str, ...] = ()

    def job_permissions(self, job: Job) -> Dict[str, Access]:
        """Workflow-level grants overlaid by the job's explicit elevation."""
        perms = dict(self.permissions)
        perms.update(job.permissions)
        return perms

    def access(self, job: Job, capability: str) -> Access:
        return self.job_permissions(job).get(capability, Access.NONE)
