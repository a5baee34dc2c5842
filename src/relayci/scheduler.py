# scheduler.py
from __future__ import annotations

import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .actions import ActionContext, ActionRegistry
from .cache import CacheHit, CacheManager
from .errors import ExecutionError, StepFailure
from .model import RunStep, Step
from .run import JobInstance, JobStatus, Run, RunStatus, StepResult, StepStatus
from .runtime import ProcessRuntime, runtime_for
from .ui.console import get_console

RuntimeFactory = Callable[[str, Path], ProcessRuntime]

_NESTED_TO_JOB = {
    RunStatus.SUCCEEDED: JobStatus.SUCCEEDED,
    RunStatus.FAILED: JobStatus.FAILED,
    RunStatus.CANCELLED: JobStatus.CANCELLED,
}


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class Scheduler:
    """
    Executes a Run's DAG of JobInstances.

    - an instance is eligible once every instance of each needed family is
      SUCCEEDED (or terminal, for jobs tolerating upstream failure);
      otherwise it is SKIPPED
    - eligible instances run on a thread pool, at most `max_workers` at once
    - steps of one instance run strictly in order on one worker
    - cancellation (run cancel or fail-fast) is honoured at step boundaries
    """

    def __init__(
        self,
        *,
        workspace: str | Path = ".",
        cache: Optional[CacheManager] = None,
        actions: Optional[ActionRegistry] = None,
        max_workers: Optional[int] = None,
        runtime_factory: RuntimeFactory = runtime_for,
    ):
        self.workspace = Path(workspace).resolve()
        self.cache = cache
        self.actions = actions or ActionRegistry()
        self.max_workers = max_workers or default_workers()
        self.runtime_factory = runtime_factory

    # ------------------------------------------------------------------
    # Run level
    # ------------------------------------------------------------------

    def schedule(self, run: Run) -> RunStatus:
        console = get_console()
        if run.depth == 0:
            console.print_run_started(
                run_id=run.id,
                workflow=run.definition.name,
                event=f"{run.event.effective_kind.value} {run.event.ref}",
                job_count=len(run.jobs),
            )
        run.set_status(RunStatus.RUNNING)

        for inst in run.jobs.values():
            if inst.status == JobStatus.FAILED and inst.error is not None:
                console.print_failure(inst.id, str(inst.error), is_job=True)

        self._execute_dag(run)

        status = self._final_status(run)
        run.set_status(status)
        if run.depth == 0:
            console.print_results(run.status.value, run.results())
        return run.status

    def _final_status(self, run: Run) -> RunStatus:
        if run.cancelled:
            return RunStatus.CANCELLED
        failed = any(
            inst.status == JobStatus.FAILED and not inst.job.continue_on_error
            for inst in run.jobs.values()
        )
        return RunStatus.FAILED if failed else RunStatus.SUCCEEDED

    def _upstream(self, run: Run) -> Dict[str, List[JobInstance]]:
        families = run.families()
        return {
            inst.id: [u for fam in inst.job.needs for u in families.get(fam, [])]
            for inst in run.jobs.values()
        }

    def _collect_eligible(self, run: Run, upstream: Dict[str, List[JobInstance]]) -> List[JobInstance]:
        """Settle pending instances (skip/cancel) until nothing changes; return the runnable ones."""
        console = get_console()
        changed = True
        while changed:
            changed = False
            for inst in run.jobs.values():
                if inst.status != JobStatus.PENDING:
                    continue
                if run.cancelled or inst.cancel_requested.is_set():
                    inst.status = JobStatus.CANCELLED
                    if inst.nested is not None:
                        inst.nested.cancel(run.cancel_reason or "cancelled")
                    changed = True
                    continue
                ups = upstream[inst.id]
                if not all(u.status.terminal for u in ups):
                    continue
                if inst.job.tolerate_upstream_failure:
                    continue
                if any(u.status != JobStatus.SUCCEEDED for u in ups):
                    inst.status = JobStatus.SKIPPED
                    console.print_job_skipped(inst.id, "upstream job did not succeed")
                    changed = True

        return [
            inst
            for inst in run.jobs.values()
            if inst.status == JobStatus.PENDING and all(u.status.terminal for u in upstream[inst.id])
        ]

    def _execute_dag(self, run: Run) -> None:
        console = get_console()
        upstream = self._upstream(run)
        in_flight: Dict[Future, JobInstance] = {}

        # legs that failed while the run was planned never reach the pool
        for inst in list(run.jobs.values()):
            if inst.status == JobStatus.FAILED:
                self._fail_fast(run, inst)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                submitted = {inst.id for inst in in_flight.values()}
                for inst in self._collect_eligible(run, upstream):
                    if len(in_flight) >= self.max_workers:
                        break
                    if inst.id in submitted:
                        continue
                    inst.status = JobStatus.RUNNING
                    in_flight[pool.submit(self._run_instance, run, inst)] = inst

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-eligible jobs
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    inst = in_flight.pop(fut)
                    try:
                        fut.result()
                    except Exception as e:
                        inst.status = JobStatus.FAILED
                        inst.error = e
                        console.print_failure(inst.id, str(e), is_job=True)

                    console.print_job_finished(inst.id, inst.status.value)
                    if inst.status == JobStatus.FAILED:
                        self._fail_fast(run, inst)

    def _fail_fast(self, run: Run, failed: JobInstance) -> None:
        """A failed matrix leg cancels its not-yet-terminal siblings."""
        if failed.job.matrix is None or not failed.job.fail_fast:
            return
        for sibling in run.families()[failed.family]:
            if sibling is failed or sibling.status.terminal:
                continue
            if sibling.status == JobStatus.PENDING:
                sibling.status = JobStatus.CANCELLED
            sibling.request_cancel()

    # ------------------------------------------------------------------
    # Job level
    # ------------------------------------------------------------------

    def _stop_requested(self, run: Run, inst: JobInstance) -> bool:
        return run.cancelled or inst.cancel_requested.is_set()

    def _run_instance(self, run: Run, inst: JobInstance) -> None:
        console = get_console()
        console.print_job_start(inst.id)

        if inst.nested is not None:
            if self._stop_requested(run, inst):
                inst.nested.cancel("parent job cancelled")
            nested_status = self.schedule(inst.nested)
            inst.status = _NESTED_TO_JOB[nested_status]
            return

        try:
            runtime = self.runtime_factory(inst.job.runs_on or "", self.workspace)
        except ExecutionError as e:
            inst.error = e
            inst.status = JobStatus.FAILED
            console.print_failure(inst.id, str(e), is_job=True)
            return

        failed = False
        for step in inst.steps:
            if self._stop_requested(run, inst):
                inst.results.append(StepResult(step.name, StepStatus.CANCELLED))
                continue
            if failed:
                inst.results.append(StepResult(step.name, StepStatus.SKIPPED))
                continue

            error: Optional[ExecutionError] = None
            try:
                result = self._run_step(run, inst, step, runtime)
            except ExecutionError as e:
                result = StepResult(step.name, StepStatus.FAILED, error=e.message)
                error = e
            else:
                if result.status == StepStatus.FAILED:
                    error = StepFailure(job=inst.id, step=step.name, exit_code=result.exit_code or 1)
            inst.results.append(result)

            if error is None:
                continue
            console.print_failure(step.name, str(error), exit_code=result.exit_code)
            if step.continue_on_error:
                continue
            failed = True
            inst.error = error

        if failed:
            inst.status = JobStatus.FAILED
        elif self._stop_requested(run, inst):
            inst.status = JobStatus.CANCELLED
        else:
            inst.status = JobStatus.SUCCEEDED

    # ------------------------------------------------------------------
    # Step level
    # ------------------------------------------------------------------

    def _restore(self, inst: JobInstance, step: Step) -> Optional[CacheHit]:
        if self.cache is None or not isinstance(step, RunStep) or step.cache is None:
            return None
        return self.cache.restore(step.cache, self.workspace, job=inst.id)

    def _run_step(self, run: Run, inst: JobInstance, step: Step, runtime: ProcessRuntime) -> StepResult:
        """
        Run one step inside its own secret frame. Only the secrets the step
        declares are fetched; output is redacted before it leaves the frame.
        """
        console = get_console()
        console.print_step(inst.id, step.name)

        hit = self._restore(inst, step)

        with run.secrets.frame(step.secrets, job=inst.id, step=step.name) as frame:
            env = dict(inst.env)
            env.update(getattr(step, "env", {}) or {})
            env.update(frame.env())

            if isinstance(step, RunStep):
                result = runtime.execute(step.shell or "", step.run, env, step.cwd)
            else:
                result = self.actions.run(ActionContext(run=run, job=inst, step=step, env=env))
            output = frame.redact(result.output)

        console.print_step_output(inst.id, output)
        if result.exit_code != 0:
            return StepResult(step.name, StepStatus.FAILED, exit_code=result.exit_code, output=output)

        # save once, after success, under the restore-time key
        if hit is not None and not hit.hit and self.cache is not None:
            self.cache.save(step.cache, self.workspace, key=hit.key, job=inst.id)
        return StepResult(step.name, StepStatus.SUCCEEDED, exit_code=0, output=output)
