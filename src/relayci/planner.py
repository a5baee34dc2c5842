# planner.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

from .composite import CompositeResolver, render_with
from .errors import CIError, ResolutionError
from .invoker import DEFAULT_MAX_NESTING, ReusableWorkflowInvoker
from .loader import validate
from .model import Access, Event, Job, RunStep, Step, UseStep, WorkflowDefinition, cap_permissions
from .registry import ActionIndex, WorkflowIndex
from .run import JobInstance, JobStatus, Run, leg_id
from .secrets import DictVault, SecretScope, SecretVault
from .templating import render

# Shell given to job-level run steps that do not name one. Composite
# bundle steps never get a default.
DEFAULT_SHELL = "bash"


class RunPlanner:
    """
    Turns a WorkflowDefinition + Event into a fully concrete Run:
      - matrix legs expanded
      - composite bundles inlined
      - delegating jobs resolved into nested Runs (recursively)

    A resolution/invocation error fails only the job that caused it; the
    instance is created already FAILED so dependents are skipped.
    """

    def __init__(
        self,
        *,
        workflows: Optional[WorkflowIndex] = None,
        actions: Optional[ActionIndex] = None,
        vault: Optional[SecretVault] = None,
        max_nesting: int = DEFAULT_MAX_NESTING,
    ):
        self.workflows = workflows or WorkflowIndex()
        self.actions = actions or ActionIndex()
        self.vault = vault or DictVault()
        self.resolver = CompositeResolver(self.actions)
        self.invoker = ReusableWorkflowInvoker(self.workflows, self._build_nested, max_nesting=max_nesting)

    # -------------------- public --------------------

    def create_run(self, definition: WorkflowDefinition, event: Event) -> Run:
        validate(definition)
        run = Run(definition, event, SecretScope(self.vault, definition.secrets))
        self._populate(run)
        return run

    # -------------------- internals --------------------

    def _build_nested(
        self,
        definition: WorkflowDefinition,
        *,
        parent: Run,
        secrets: SecretScope,
        inputs: Dict[str, Any],
        ceiling: Dict[str, Access],
    ) -> Run:
        run = Run(
            definition,
            parent.event,
            secrets,
            inputs=inputs,
            depth=parent.depth + 1,
            parent=parent,
            permission_ceiling=ceiling,
        )
        self._populate(run)
        return run

    def _context(self, run: Run, matrix: Dict[str, Any]) -> Dict[str, Any]:
        event = run.event
        return {
            "matrix": matrix,
            "inputs": run.inputs,
            "workflow": run.definition.name,
            "ref": event.ref,
            "branch": event.branch or "",
            "tag": event.tag or "",
            "sha": event.sha or "",
            "event": event.effective_kind.value,
        }

    def _populate(self, run: Run) -> None:
        for job in run.definition.jobs.values():
            legs = job.matrix.combinations() if job.matrix is not None else [{}]
            for values in legs:
                inst = JobInstance(
                    id=leg_id(job.name, values),
                    job=job,
                    matrix=dict(values),
                    permissions=cap_permissions(run.definition.job_permissions(job), run.permission_ceiling),
                )
                context = self._context(run, values)
                try:
                    if job.uses is not None:
                        inst.nested = self.invoker.invoke(
                            job.uses, run.secrets, parent=run, job=job, context=context
                        )
                    else:
                        inst.env = self._job_env(job, context)
                        inst.steps = self._concrete_steps(job, context)
                except CIError as e:
                    if e.job is None:
                        e.job = inst.id
                    inst.error = e
                    inst.status = JobStatus.FAILED
                run.jobs[inst.id] = inst

    def _job_env(self, job: Job, context: Dict[str, Any]) -> Dict[str, str]:
        try:
            return {k: render(v, context) for k, v in job.env.items()}
        except KeyError as e:
            raise ResolutionError(
                ResolutionError.Kind.INPUT_MISMATCH,
                f"env of job '{job.name}' references an unknown expression",
                job=job.name,
                details={"expression": e.args[0]},
            ) from None

    def _concrete_steps(self, job: Job, context: Dict[str, Any]) -> List[Step]:
        steps: List[Step] = []
        for step in job.steps:
            try:
                if isinstance(step, RunStep):
                    steps.append(
                        replace(
                            step,
                            name=render(step.name, context),
                            run=render(step.run, context),
                            shell=step.shell or DEFAULT_SHELL,
                            env={k: render(v, context) for k, v in step.env.items()},
                        )
                    )
                    continue

                with_ = render_with(step.with_, context)
            except KeyError as e:
                raise ResolutionError(
                    ResolutionError.Kind.INPUT_MISMATCH,
                    f"step '{step.name}' references an unknown expression",
                    job=job.name,
                    step=step.name,
                    details={"expression": e.args[0]},
                ) from None

            if isinstance(step, UseStep) and step.is_composite:
                steps.extend(self.resolver.expand(step, with_, job.secrets))
            else:
                steps.append(replace(step, with_=with_))
        return steps
