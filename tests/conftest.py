"""Shared test fixtures and fakes."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

import pytest

from relayci.runtime import ExecResult
from relayci.scheduler import Scheduler
from relayci.ui.console import Console, set_console


class FakeRuntime:
    """
    Records every execute() call. `behaviour` maps a command prefix to
    either an exit code or a callable(env, cwd) -> ExecResult.
    """

    def __init__(self, behaviour: Optional[Dict[str, object]] = None):
        self.behaviour = dict(behaviour or {})
        self.calls: List[Dict[str, object]] = []
        self._lock = threading.Lock()

    def execute(self, shell: str, command: str, env: Mapping[str, str], cwd: Optional[str] = None) -> ExecResult:
        with self._lock:
            self.calls.append({"shell": shell, "command": command, "env": dict(env), "cwd": cwd})
        for prefix, outcome in self.behaviour.items():
            if command.startswith(prefix):
                if callable(outcome):
                    return outcome(env, cwd)
                return ExecResult(exit_code=int(outcome), output=f"{command}\n")
        return ExecResult(exit_code=0, output=f"{command}\n")

    @property
    def commands(self) -> List[str]:
        with self._lock:
            return [c["command"] for c in self.calls]


class FakeRegistryClient:
    def __init__(self, identity: str = "release-bot"):
        self.identity = identity
        self.published: List[tuple] = []

    def whoami(self) -> str:
        return self.identity

    def publish(self, package: str, access: str) -> None:
        self.published.append((package, access))


@pytest.fixture(autouse=True)
def fresh_console():
    """Every test gets a non-debug console writing to the (captured) std streams."""
    console = Console()
    set_console(console)
    return console


@pytest.fixture()
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def make_scheduler(tmp_path: Path) -> Callable[..., Scheduler]:
    def _make(runtime: FakeRuntime, **kwargs) -> Scheduler:
        kwargs.setdefault("workspace", tmp_path)
        kwargs.setdefault("max_workers", 4)
        return Scheduler(runtime_factory=lambda runs_on, workspace: runtime, **kwargs)

    return _make
