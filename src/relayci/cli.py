# cli.py
from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click

from .actions import CommandRegistryClient, default_actions
from .cache import CacheManager
from .dag import build_dag, topo_levels
from .engine import Orchestrator
from .errors import CIError
from .git import current_ref, head_sha
from .loader import load
from .model import Event, EventKind, WorkflowDefinition
from .planner import RunPlanner
from .registry import load_index
from .run import RunStatus
from .scheduler import Scheduler
from .secrets import EnvVault, SecretVault
from .settings import Settings
from .stores import FileBlobStore, RedisBlobStore
from .triggers import activates
from .ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "relayci_workflow.py"


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory: relayci_workflow.py, *_workflow.py, *.workflow.json."""
    current_dir = Path(".")
    found = set(current_dir.glob("*_workflow.py"))
    found.update(current_dir.glob("*.workflow.json"))
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from --workflow or by looking around the
    current directory. Exits with status 1 when none (or several) are found.
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py", ".json"):
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  relayci run --workflow ci_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    default = Path(DEFAULT_WORKFLOW)
    if default.exists():
        return default

    workflow_files = find_workflow_files()
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py", "  *.workflow.json"],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow explicitly.",
        )
        sys.exit(1)
    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  relayci run --workflow {workflow_files[0]}",
        )
        sys.exit(1)
    return workflow_files[0]


def _parse_inputs(pairs: Tuple[str, ...]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected NAME=VALUE, got {pair!r}", param_hint="--input")
        out[name] = value
    return out


def build_event(kind: str, ref: Optional[str], tag: Optional[str], sha: Optional[str], inputs: Dict[str, str]) -> Event:
    """
    --tag wins over --ref and makes the event a tag push. Without either,
    the ref and sha come from the local git checkout.
    """
    if tag:
        return Event(EventKind(kind), f"refs/tags/{tag}", is_tag=True, sha=sha, inputs=inputs)

    if ref is None:
        try:
            ref = current_ref()
        except (subprocess.CalledProcessError, FileNotFoundError):
            get_console().print_error(
                "Could not determine git ref",
                "No --ref given and the current directory is not a git checkout.",
                suggestion="Specify the event explicitly:\n  relayci run --ref refs/heads/main",
            )
            sys.exit(1)
    if sha is None:
        try:
            sha = head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = None

    is_tag = ref.startswith("refs/tags/")
    return Event(EventKind(kind), ref, is_tag=is_tag, sha=sha, inputs=inputs)


def _vault(settings: Settings, names: Tuple[str, ...]) -> EnvVault:
    """
    Only secrets named with --secret are exposed. Each is read from the
    environment variable RELAYCI_SECRET_PREFIX + NAME when a step needs it.
    """
    console = get_console()
    for name in names:
        if settings.secret_prefix + name not in os.environ:
            console.print_warning(f"secret '{name}' is not set in the environment ({settings.secret_prefix}{name})")
    return EnvVault(settings.secret_prefix, names=names)


def _cache(settings: Settings) -> CacheManager:
    if settings.redis_url:
        return CacheManager(RedisBlobStore.from_url(settings.redis_url))
    return CacheManager(FileBlobStore(settings.cache_dir))


def _planner(settings: Settings, vault: Optional[SecretVault] = None) -> RunPlanner:
    index_dir = Path(settings.index_dir)
    if index_dir.is_dir():
        workflows, actions = load_index(index_dir)
    else:
        workflows, actions = None, None
    return RunPlanner(workflows=workflows, actions=actions, vault=vault, max_nesting=settings.max_nesting)


def _fail(exc: Exception) -> None:
    get_console().print_exception(exc)
    sys.exit(1)


def _load(workflow: Optional[str]) -> WorkflowDefinition:
    workflow_path = discover_workflow(workflow)
    try:
        return load(workflow_path)
    except (CIError, OSError, ValueError, TypeError) as e:
        get_console().print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        sys.exit(1)


event_options = [
    click.option(
        "--event",
        "event_kind",
        type=click.Choice([k.value for k in EventKind]),
        default=EventKind.PUSH.value,
        show_default=True,
        help="Event kind to simulate",
    ),
    click.option("--ref", default=None, help="Git ref, e.g. refs/heads/main (defaults to the checkout)"),
    click.option("--tag", default=None, help="Tag name; makes the event a tag push"),
    click.option("--sha", default=None, help="Commit sha (defaults to HEAD)"),
    click.option("--input", "inputs", multiple=True, metavar="NAME=VALUE", help="Event input (repeatable)"),
]


def with_event_options(fn):
    for option in reversed(event_options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and step output)",
)
@click.pass_context
def cli(ctx, debug):
    """relayci: workflow orchestration engine."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    try:
        ctx.obj["settings"] = Settings.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from None


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file (.py or .json; defaults to {DEFAULT_WORKFLOW})")
def validate(workflow):
    """Load and validate a workflow definition."""
    definition = _load(workflow)
    get_console().print_info(
        f"OK: {definition.name} ({len(definition.jobs)} job(s), {len(definition.triggers)} trigger(s))"
    )


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file (.py or .json; defaults to {DEFAULT_WORKFLOW})")
@with_event_options
@click.pass_context
def plan(ctx, workflow, event_kind, ref, tag, sha, inputs):
    """Print the stages and job instances a run would execute."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    definition = _load(workflow)
    event = build_event(event_kind, ref, tag, sha, _parse_inputs(inputs))

    if not activates(definition, event):
        console.print_info(f"{definition.name}: not triggered by {event.effective_kind.value} {event.ref}")
        return

    try:
        run = _planner(settings).create_run(definition, event)
    except (CIError, OSError, ValueError) as e:
        _fail(e)
        return

    families = run.families()
    adj, indeg = build_dag({name: job.needs for name, job in definition.jobs.items()})
    levels: List[List[str]] = [
        [inst.id for name in level for inst in families.get(name, [])]
        for level in topo_levels(adj, indeg)
    ]
    console.print_header(f"PLAN: {definition.name}")
    console.print_plan(levels)
    for inst in run.jobs.values():
        if inst.error is not None:
            console.print_failure(inst.id, str(inst.error), is_job=True)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file (.py or .json; defaults to {DEFAULT_WORKFLOW})")
@with_event_options
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--cache-dir", default=None, help="Cache directory (overrides RELAYCI_CACHE_DIR)")
@click.option("--index-dir", default=None, help="Definition index directory (overrides RELAYCI_INDEX_DIR)")
@click.option("--redis-url", default=None, help="Use a redis cache store (overrides RELAYCI_REDIS_URL)")
@click.option("--secret", "secrets", multiple=True, metavar="NAME", help="Expose env var NAME as a secret (repeatable)")
@click.option("--registry-tool", default=None, help="Package-manager CLI used by the publish action, e.g. npm")
@click.pass_context
def run(ctx, workflow, event_kind, ref, tag, sha, inputs, workers, cache_dir, index_dir, redis_url, secrets, registry_tool):
    """Run a workflow against an event."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    if cache_dir:
        settings.cache_dir = cache_dir
    if index_dir:
        settings.index_dir = index_dir
    if redis_url:
        settings.redis_url = redis_url
    if workers:
        settings.max_workers = workers

    definition = _load(workflow)
    event = build_event(event_kind, ref, tag, sha, _parse_inputs(inputs))

    try:
        registry_client = CommandRegistryClient(registry_tool) if registry_tool else None
        orchestrator = Orchestrator(
            [definition],
            planner=_planner(settings, _vault(settings, secrets)),
            scheduler=Scheduler(
                workspace=".",
                cache=_cache(settings),
                actions=default_actions(registry_client),
                max_workers=settings.max_workers,
            ),
        )
        runs = orchestrator.dispatch(event)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (CIError, OSError, ValueError) as e:
        _fail(e)
        return

    if any(r.status != RunStatus.SUCCEEDED for r in runs):
        sys.exit(1)


if __name__ == "__main__":
    cli()
