# composite.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping

from .errors import ResolutionError
from .inputs import bind_inputs
from .model import RunStep, Step, UseStep
from .registry import ActionIndex
from .templating import render

MAX_COMPOSITE_DEPTH = 8


def _render_value(value: Any, context: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return render(value, context)
    return value


def render_with(with_: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
    """Render ${{ ... }} expressions inside string input values."""
    return {k: _render_value(v, context) for k, v in with_.items()}


class CompositeResolver:
    """
    Inlines composite bundles (UseStep "path@version") into plain steps.

    - inputs are bound against the bundle's declared inputs and substituted
      into names, commands, env and cwd via ${{ inputs.<name> }}
    - every inner RunStep must carry its own shell
    - inner steps may only use secrets the job holds plus those the use-step
      forwards
    """

    def __init__(self, index: ActionIndex):
        self.index = index

    def expand(
        self,
        step: UseStep,
        inputs: Mapping[str, Any],
        job_secrets: Iterable[str],
        *,
        depth: int = 0,
    ) -> List[Step]:
        if depth >= MAX_COMPOSITE_DEPTH:
            raise ResolutionError(
                ResolutionError.Kind.ACTION_NOT_FOUND,
                f"composite nesting deeper than {MAX_COMPOSITE_DEPTH} at '{step.uses}'",
                step=step.name,
            )

        path, version = step.target
        action = self.index.resolve(path, version)

        bound = bind_inputs(action.inputs, inputs)
        if not bound.ok:
            raise ResolutionError(
                ResolutionError.Kind.INPUT_MISMATCH,
                f"inputs do not match {step.uses}",
                step=step.name,
                details={
                    "unknown": bound.unknown,
                    "missing": bound.missing,
                    "mistyped": bound.mistyped,
                },
            )

        allowed = set(job_secrets) | set(step.secrets)
        context = {"inputs": bound.values}
        out: List[Step] = []

        for inner in action.steps:
            outside = sorted(set(inner.secrets) - allowed)
            if outside:
                raise ResolutionError(
                    ResolutionError.Kind.SECRET_NOT_IN_SCOPE,
                    f"{step.uses} step '{inner.name}' needs secrets the caller does not hold",
                    step=step.name,
                    details={"secrets": outside},
                )

            name = f"{step.name} / {inner.name}"
            continue_on_error = inner.continue_on_error or step.continue_on_error

            try:
                if isinstance(inner, RunStep):
                    if not inner.shell:
                        raise ResolutionError(
                            ResolutionError.Kind.SHELL_NOT_DECLARED,
                            f"{step.uses} step '{inner.name}' does not declare a shell",
                            step=step.name,
                        )
                    out.append(
                        replace(
                            inner,
                            name=render(name, context),
                            run=render(inner.run, context),
                            env={k: render(v, context) for k, v in inner.env.items()},
                            cwd=render(inner.cwd, context) if inner.cwd else inner.cwd,
                            continue_on_error=continue_on_error,
                        )
                    )
                    continue

                rendered = render_with(inner.with_, context)
                if inner.is_composite:
                    nested = replace(inner, name=name, continue_on_error=continue_on_error)
                    out.extend(self.expand(nested, rendered, allowed, depth=depth + 1))
                else:
                    out.append(replace(inner, name=name, with_=rendered, continue_on_error=continue_on_error))
            except KeyError as e:
                raise ResolutionError(
                    ResolutionError.Kind.INPUT_MISMATCH,
                    f"{step.uses} step '{inner.name}' references an undeclared input",
                    step=step.name,
                    details={"expression": e.args[0]},
                ) from None

        return out
