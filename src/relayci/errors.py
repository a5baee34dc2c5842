# errors.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - status reporting on a job or run
      - debugging without full tracebacks
    """

    def __init__(
        self,
        kind: Enum,
        message: str,
        *,
        job: Optional[str] = None,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.job = job
        self.step = step
        self.details = dict(details or {})

    def __str__(self) -> str:
        lines = [f"{type(self).__name__}.{self.kind.name}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Definition errors (fatal, block Run creation)
# ----------------------------------------------------------------------

class DefinitionErrorKind(str, Enum):
    MISSING_REQUIRED_FIELD = "missing_required_field"
    UNKNOWN_REFERENCE = "unknown_reference"
    CYCLIC_DEPENDENCY = "cyclic_dependency"
    CONFLICTING_JOB_SHAPE = "conflicting_job_shape"
    MUTABLE_REFERENCE = "mutable_reference"


class DefinitionError(CIError):
    Kind = DefinitionErrorKind


# ----------------------------------------------------------------------
# Resolution errors (composite bundles, fatal to the referencing job)
# ----------------------------------------------------------------------

class ResolutionErrorKind(str, Enum):
    ACTION_NOT_FOUND = "action_not_found"
    SHELL_NOT_DECLARED = "shell_not_declared"
    INPUT_MISMATCH = "input_mismatch"
    SECRET_NOT_IN_SCOPE = "secret_not_in_scope"


class ResolutionError(CIError):
    Kind = ResolutionErrorKind


# ----------------------------------------------------------------------
# Invocation errors (reusable workflow boundary)
# ----------------------------------------------------------------------

class InvocationErrorKind(str, Enum):
    VERSION_NOT_FOUND = "version_not_found"
    REQUIRED_INPUT_MISSING = "required_input_missing"
    SECRET_NOT_INHERITED = "secret_not_inherited"
    INPUT_MISMATCH = "input_mismatch"
    NESTING_TOO_DEEP = "nesting_too_deep"


class InvocationError(CIError):
    Kind = InvocationErrorKind


# ----------------------------------------------------------------------
# Execution errors (a step's command or action failed)
# ----------------------------------------------------------------------

class ExecutionErrorKind(str, Enum):
    STEP_FAILED = "step_failed"
    SECRET_NOT_FOUND = "secret_not_found"
    PERMISSION_DENIED = "permission_denied"
    UNKNOWN_ACTION = "unknown_action"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"


class ExecutionError(CIError):
    Kind = ExecutionErrorKind


class StepFailure(ExecutionError):
    """A step's command exited non-zero."""

    def __init__(self, job: str, step: str, exit_code: int):
        super().__init__(
            ExecutionErrorKind.STEP_FAILED,
            f"step '{step}' failed (exit={exit_code})",
            job=job,
            step=step,
            details={"exit_code": exit_code},
        )
        self.exit_code = exit_code


# ----------------------------------------------------------------------
# Cache errors (store unreachable; always degraded to a miss)
# ----------------------------------------------------------------------

class CacheErrorKind(str, Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    CORRUPT_ARCHIVE = "corrupt_archive"


class CacheError(CIError):
    Kind = CacheErrorKind


class IndexConflict(ValueError):
    """A different document was published under an existing (path, version)."""
