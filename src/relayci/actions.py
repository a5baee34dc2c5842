# actions.py
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from .errors import ExecutionError
from .model import Access, EventKind, UseStep
from .run import JobInstance, Run
from .runtime import ExecResult


class RegistryClient(Protocol):
    """Package registry used on the release path."""

    def whoami(self) -> str: ...

    def publish(self, package: str, access: str) -> None: ...


class CommandRegistryClient:
    """
    RegistryClient backed by a package-manager CLI (npm by default):
    `<tool> whoami` and `<tool> publish <package> --access <access>`.
    """

    def __init__(self, tool: str = "npm", cwd: Optional[str] = None):
        self.tool = tool
        self.cwd = cwd

    def whoami(self) -> str:
        return subprocess.check_output([self.tool, "whoami"], cwd=self.cwd, text=True).strip()

    def publish(self, package: str, access: str) -> None:
        subprocess.run([self.tool, "publish", package, "--access", access], cwd=self.cwd, check=True)


@dataclass
class ActionContext:
    run: Run
    job: JobInstance
    step: UseStep
    env: Dict[str, str]

    @property
    def inputs(self) -> Dict[str, Any]:
        return self.step.with_

    def access(self, capability: str) -> Access:
        return self.job.permissions.get(capability, Access.NONE)


ActionHandler = Callable[[ActionContext], ExecResult]


class ActionRegistry:
    """Bare-name actions (UseStep.uses without "@version") -> handlers."""

    def __init__(self):
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, name: str, handler: ActionHandler) -> None:
        self._handlers[name] = handler

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def run(self, ctx: ActionContext) -> ExecResult:
        handler = self._handlers.get(ctx.step.uses)
        if handler is None:
            raise ExecutionError(
                ExecutionError.Kind.UNKNOWN_ACTION,
                f"no action registered as '{ctx.step.uses}'",
                job=ctx.job.id,
                step=ctx.step.name,
                details={"known": sorted(self._handlers)},
            )
        return handler(ctx)


def publish_action(client: RegistryClient) -> ActionHandler:
    """
    `uses: publish` with inputs {package, access (default "public")}.
    Allowed only in a run triggered by a tag push, from a job holding
    `packages: write`.
    """

    def handler(ctx: ActionContext) -> ExecResult:
        event = ctx.run.event
        if event.effective_kind != EventKind.TAG_PUSH or event.tag is None:
            raise ExecutionError(
                ExecutionError.Kind.PERMISSION_DENIED,
                "publish is only allowed from a tag push",
                job=ctx.job.id,
                step=ctx.step.name,
                details={"event": event.effective_kind.value, "ref": event.ref},
            )
        if ctx.access("packages") != Access.WRITE:
            raise ExecutionError(
                ExecutionError.Kind.PERMISSION_DENIED,
                "publish requires 'packages: write'",
                job=ctx.job.id,
                step=ctx.step.name,
            )

        package = ctx.inputs.get("package")
        if not package:
            raise ExecutionError(
                ExecutionError.Kind.STEP_FAILED,
                "publish needs a 'package' input",
                job=ctx.job.id,
                step=ctx.step.name,
            )
        access = str(ctx.inputs.get("access", "public"))

        try:
            identity = client.whoami()
            client.publish(str(package), access)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ExecutionError(
                ExecutionError.Kind.STEP_FAILED,
                f"publishing {package} failed: {e}",
                job=ctx.job.id,
                step=ctx.step.name,
            ) from e
        return ExecResult(exit_code=0, output=f"published {package} ({access}) as {identity}\n")

    return handler


def default_actions(registry_client: Optional[RegistryClient] = None) -> ActionRegistry:
    registry = ActionRegistry()
    if registry_client is not None:
        registry.register("publish", publish_action(registry_client))
    return registry
