# invoker.py
from __future__ import annotations

from typing import Any, Callable, Mapping

from .composite import render_with
from .errors import InvocationError
from .inputs import bind_inputs
from .loader import validate
from .model import Job, ReusableWorkflowRef, SecretMode, cap_permissions
from .registry import WorkflowIndex
from .run import Run
from .secrets import SecretScope

DEFAULT_MAX_NESTING = 4

# (definition, parent run, secrets, inputs, ceiling) -> nested Run
BuildRun = Callable[..., Run]


class ReusableWorkflowInvoker:
    """
    Resolves a delegating job's ReusableWorkflowRef into a nested Run.

    The definition always comes from the immutable (path, version) snapshot
    in the workflow index; there is no way to follow a moving branch.
    """

    def __init__(self, index: WorkflowIndex, build_run: BuildRun, *, max_nesting: int = DEFAULT_MAX_NESTING):
        self.index = index
        self.build_run = build_run
        self.max_nesting = max_nesting

    def _secret_names(self, ref: ReusableWorkflowRef, caller_secrets: SecretScope, job: Job) -> frozenset:
        if ref.secret_mode == SecretMode.INHERIT:
            return caller_secrets.names

        requested = frozenset(ref.secrets)
        missing = sorted(requested - caller_secrets.names)
        if missing:
            raise InvocationError(
                InvocationError.Kind.SECRET_NOT_INHERITED,
                f"caller does not hold secrets it forwards to {ref}",
                job=job.name,
                details={"secrets": missing},
            )
        return requested

    def invoke(
        self,
        ref: ReusableWorkflowRef,
        caller_secrets: SecretScope,
        *,
        parent: Run,
        job: Job,
        context: Mapping[str, Any],
    ) -> Run:
        depth = parent.depth + 1
        if depth > self.max_nesting:
            raise InvocationError(
                InvocationError.Kind.NESTING_TOO_DEEP,
                f"reusable workflows nest deeper than {self.max_nesting} levels",
                job=job.name,
                details={"ref": str(ref)},
            )

        definition = validate(self.index.resolve(ref.path, ref.version))

        try:
            provided = render_with(ref.with_, context)
        except KeyError as e:
            raise InvocationError(
                InvocationError.Kind.INPUT_MISMATCH,
                f"input binding for {ref} references an unknown expression",
                job=job.name,
                details={"expression": e.args[0]},
            ) from None

        bound = bind_inputs(definition.inputs, provided)
        if bound.missing:
            raise InvocationError(
                InvocationError.Kind.REQUIRED_INPUT_MISSING,
                f"required inputs of {ref} are not bound",
                job=job.name,
                details={"missing": bound.missing},
            )
        if bound.unknown or bound.mistyped:
            raise InvocationError(
                InvocationError.Kind.INPUT_MISMATCH,
                f"inputs do not match {ref}",
                job=job.name,
                details={"unknown": bound.unknown, "mistyped": bound.mistyped},
            )

        names = self._secret_names(ref, caller_secrets, job)
        required = sorted(set(definition.secrets) - names)
        if required:
            raise InvocationError(
                InvocationError.Kind.SECRET_NOT_INHERITED,
                f"{ref} requires secrets that are not passed",
                job=job.name,
                details={"secrets": required},
            )

        ceiling = cap_permissions(parent.definition.job_permissions(job), parent.permission_ceiling)
        return self.build_run(
            definition,
            parent=parent,
            secrets=caller_secrets.narrowed(names),
            inputs=bound.values,
            ceiling=ceiling,
        )
