from .dsl import composite, job, matrix, on_call, on_manual, on_pull_request, on_push, on_tag, reusable, sh, use, wf
from .engine import Orchestrator
from .loader import load, load_composite
from .model import Event, EventKind, Job, RunStep, UseStep, WorkflowDefinition

__all__ = [
    "composite",
    "job",
    "matrix",
    "on_call",
    "on_manual",
    "on_pull_request",
    "on_push",
    "on_tag",
    "reusable",
    "sh",
    "use",
    "wf",
    "Orchestrator",
    "load",
    "load_composite",
    "Event",
    "EventKind",
    "Job",
    "RunStep",
    "UseStep",
    "WorkflowDefinition",
]
