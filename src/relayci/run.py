# run.py
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .model import Access, Event, Job, Step, WorkflowDefinition
from .secrets import SecretScope


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""  # already redacted
    error: Optional[str] = None


def leg_id(name: str, values: Dict[str, Any]) -> str:
    if not values:
        return name
    return f"{name} ({', '.join(f'{k}={v}' for k, v in values.items())})"


@dataclass(eq=False)
class JobInstance:
    """
    One concrete node of a Run's DAG: a plain job, one matrix leg, or a
    job delegating to a nested Run.
    """
    id: str
    job: Job
    matrix: Dict[str, Any] = field(default_factory=dict)
    steps: List[Step] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    nested: Optional["Run"] = None
    permissions: Dict[str, Access] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    error: Optional[Exception] = None
    results: List[StepResult] = field(default_factory=list)
    cancel_requested: threading.Event = field(default_factory=threading.Event)

    @property
    def family(self) -> str:
        return self.job.name

    def request_cancel(self) -> None:
        self.cancel_requested.set()
        if self.nested is not None:
            self.nested.cancel("parent job cancelled")


class Run:
    """One materialized execution of a WorkflowDefinition against an event."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        event: Event,
        secrets: SecretScope,
        *,
        inputs: Optional[Dict[str, Any]] = None,
        depth: int = 0,
        parent: Optional["Run"] = None,
        permission_ceiling: Optional[Dict[str, Access]] = None,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.definition = definition
        self.event = event
        self.secrets = secrets
        self.inputs = dict(inputs or {})
        self.depth = depth
        self.parent = parent
        self.permission_ceiling = permission_ceiling
        self.jobs: Dict[str, JobInstance] = {}
        self.group: Optional[str] = None
        self.cancel_reason: Optional[str] = None

        self._status = RunStatus.QUEUED
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Run(id={self.id!r}, workflow={self.definition.name!r}, status={self._status.value!r})"

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status.terminal

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def set_status(self, status: RunStatus) -> bool:
        """Transition unless already terminal (terminal states are final)."""
        with self._lock:
            if self._status.terminal:
                return False
            self._status = status
            return True

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Move to CANCELLED and signal every job. Running steps finish; the
        scheduler stops at the next step boundary.
        """
        with self._lock:
            if self._status.terminal:
                return False
            self._status = RunStatus.CANCELLED
            self.cancel_reason = reason
            self._cancelled.set()
        for inst in self.jobs.values():
            if inst.nested is not None:
                inst.nested.cancel(reason)
        return True

    def families(self) -> Dict[str, List[JobInstance]]:
        out: Dict[str, List[JobInstance]] = {}
        for inst in self.jobs.values():
            out.setdefault(inst.family, []).append(inst)
        return out

    def results(self) -> Dict[str, str]:
        return {inst.id: inst.status.value for inst in self.jobs.values()}
