# engine.py
from __future__ import annotations

from typing import Iterable, List, Optional

from .concurrency import ConcurrencyController, render_group_key
from .model import Event, WorkflowDefinition
from .planner import RunPlanner
from .run import Run, RunStatus
from .scheduler import Scheduler
from .triggers import select_definitions
from .ui.console import get_console


class Orchestrator:
    """
    event -> matching definitions -> Runs -> concurrency slot -> scheduler.

    One Orchestrator (and so one ConcurrencyController) should serve every
    run of a repository, otherwise group keys do not see each other.
    """

    def __init__(
        self,
        definitions: Iterable[WorkflowDefinition] = (),
        *,
        planner: Optional[RunPlanner] = None,
        scheduler: Optional[Scheduler] = None,
        concurrency: Optional[ConcurrencyController] = None,
    ):
        self.definitions = list(definitions)
        self.planner = planner or RunPlanner()
        self.scheduler = scheduler or Scheduler()
        self.concurrency = concurrency or ConcurrencyController()

    def match(self, event: Event) -> List[WorkflowDefinition]:
        return select_definitions(self.definitions, event)

    def create_run(self, definition: WorkflowDefinition, event: Event) -> Run:
        return self.planner.create_run(definition, event)

    def execute(self, run: Run, *, timeout: Optional[float] = None) -> RunStatus:
        """
        Take the run's concurrency slot (waiting in queue mode), schedule
        it, and free the slot once it is terminal.
        """
        policy = run.definition.concurrency
        if policy is not None:
            key = render_group_key(policy.group, run)
            if not self.concurrency.register(run, key, policy.mode):
                if not self.concurrency.wait_admitted(run, timeout):
                    run.cancel(f"timed out waiting for group '{key}'")
        try:
            # a run cancelled while queued still goes through the scheduler
            # so every job is reported as CANCELLED
            return self.scheduler.schedule(run)
        finally:
            if policy is not None:
                nxt = self.concurrency.release(run)
                if nxt is not None:
                    get_console().print_debug(f"group '{run.group}' admitted run {nxt.id}")

    def start(self, definition: WorkflowDefinition, event: Event) -> Run:
        run = self.create_run(definition, event)
        self.execute(run)
        return run

    def dispatch(self, event: Event) -> List[Run]:
        """Start a Run for every definition the event activates, in declaration order."""
        matched = self.match(event)
        if not matched:
            get_console().print_info(f"No workflow matches {event.effective_kind.value} {event.ref}")
        return [self.start(definition, event) for definition in matched]
