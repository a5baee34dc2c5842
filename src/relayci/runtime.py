# runtime.py
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol

from .errors import ExecutionError

# ---------------------------------------------------------------------
# Process/container runtime: execute(shell, command, env, cwd) -> ExecResult
# Only the explicit env map reaches the command, plus the host's PATH and
# HOME so that shells and tools can be located.
# ---------------------------------------------------------------------

HOST_ENV_KEYS = ("PATH", "HOME")
LOCAL_TARGETS = ("local", "host")
DOCKER_PREFIX = "docker://"

# Output kept per step; older output is dropped.
MAX_OUTPUT_CHARS = 64_000


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str


class ProcessRuntime(Protocol):
    def execute(
        self,
        shell: str,
        command: str,
        env: Mapping[str, str],
        cwd: Optional[str] = None,
    ) -> ExecResult: ...


def shell_argv(shell: str, command: str) -> List[str]:
    if shell == "bash":
        return ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c", command]
    if shell == "sh":
        return ["sh", "-e", "-c", command]
    if shell == "pwsh":
        return ["pwsh", "-NoProfile", "-NonInteractive", "-Command", command]
    if shell == "python":
        return ["python3", "-c", command]
    raise ExecutionError(
        ExecutionError.Kind.RUNTIME_UNAVAILABLE,
        f"unsupported shell '{shell}'",
        details={"supported": "bash, sh, pwsh, python"},
    )


def _host_env() -> Dict[str, str]:
    return {k: os.environ[k] for k in HOST_ENV_KEYS if k in os.environ}


def _tail(text: str) -> str:
    return text[-MAX_OUTPUT_CHARS:]


class SubprocessRuntime:
    """Runs step commands as local processes rooted at `workspace`."""

    def __init__(self, workspace: str | Path = "."):
        self.workspace = Path(workspace).resolve()

    def _cwd(self, cwd: Optional[str]) -> Path:
        path = (self.workspace / (cwd or ".")).resolve()
        if not path.exists():
            raise ExecutionError(
                ExecutionError.Kind.RUNTIME_UNAVAILABLE,
                f"working directory not found: {path}",
            )
        return path

    def execute(
        self,
        shell: str,
        command: str,
        env: Mapping[str, str],
        cwd: Optional[str] = None,
    ) -> ExecResult:
        full_env = _host_env()
        full_env.update(env)
        try:
            proc = subprocess.run(
                shell_argv(shell, command),
                cwd=str(self._cwd(cwd)),
                env=full_env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                ExecutionError.Kind.RUNTIME_UNAVAILABLE,
                f"shell '{shell}' is not available",
                details={"error": str(e)},
            ) from e
        return ExecResult(exit_code=proc.returncode, output=_tail(proc.stdout or ""))


class DockerRuntime:
    """Runs step commands inside `image` with the workspace mounted at /workspace."""

    container_workdir = "/workspace"

    def __init__(self, image: str, workspace: str | Path = ".", *, docker: str = "docker"):
        self.image = image
        self.workspace = Path(workspace).resolve()
        self.docker = docker
        self._checked = False

    def _check_docker_available(self) -> None:
        if self._checked:
            return
        try:
            subprocess.run([self.docker, "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise ExecutionError(
                ExecutionError.Kind.RUNTIME_UNAVAILABLE,
                "Docker is not available",
                details={"hint": "Install Docker and ensure the daemon is running."},
            ) from e
        self._checked = True

    def build_command(self, shell: str, command: str, env: Mapping[str, str], cwd: Optional[str]) -> List[str]:
        cmd = [self.docker, "run", "--rm"]
        cmd.extend(["-v", f"{self.workspace}:{self.container_workdir}"])
        container_cwd = f"{self.container_workdir}/{cwd or '.'}".replace("//", "/")
        cmd.extend(["-w", container_cwd])
        # names only: docker reads the values from its own environment,
        # so they never appear in argv
        for key in sorted(env):
            cmd.extend(["-e", key])
        cmd.append(self.image)
        cmd.extend(shell_argv(shell, command))
        return cmd

    def execute(
        self,
        shell: str,
        command: str,
        env: Mapping[str, str],
        cwd: Optional[str] = None,
    ) -> ExecResult:
        self._check_docker_available()
        full_env = _host_env()
        full_env.update(env)
        proc = subprocess.run(
            self.build_command(shell, command, env, cwd),
            env=full_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        return ExecResult(exit_code=proc.returncode, output=_tail(proc.stdout or ""))


def runtime_for(runs_on: str, workspace: str | Path = ".") -> ProcessRuntime:
    """Pick a runtime for a job's execution target."""
    if runs_on in LOCAL_TARGETS:
        return SubprocessRuntime(workspace)
    if runs_on.startswith(DOCKER_PREFIX):
        return DockerRuntime(runs_on[len(DOCKER_PREFIX):], workspace)
    raise ExecutionError(
        ExecutionError.Kind.RUNTIME_UNAVAILABLE,
        f"no runtime for target '{runs_on}'",
        details={"supported": "local, host, docker://<image>"},
    )
