"""Tests for the process runtimes."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from relayci.errors import ExecutionError
from relayci.runtime import DockerRuntime, SubprocessRuntime, runtime_for, shell_argv


class TestShellArgv:
    def test_known_shells(self):
        assert shell_argv("bash", "make")[0] == "bash"
        assert shell_argv("sh", "make") == ["sh", "-e", "-c", "make"]
        assert shell_argv("python", "print(1)")[-1] == "print(1)"

    def test_unknown_shell(self):
        with pytest.raises(ExecutionError) as exc:
            shell_argv("fish", "make")
        assert exc.value.kind == ExecutionError.Kind.RUNTIME_UNAVAILABLE


class TestRuntimeFor:
    def test_targets(self, tmp_path: Path):
        assert isinstance(runtime_for("local", tmp_path), SubprocessRuntime)
        docker = runtime_for("docker://python:3.12", tmp_path)
        assert isinstance(docker, DockerRuntime)
        assert docker.image == "python:3.12"

    def test_unknown_target(self):
        with pytest.raises(ExecutionError):
            runtime_for("vm://large")


class TestDockerRuntime:
    def test_env_values_never_in_argv(self, tmp_path: Path):
        cmd = DockerRuntime("node:20", tmp_path).build_command("sh", "npm ci", {"TOKEN": "hunter2"}, "web")
        assert "hunter2" not in " ".join(cmd)
        assert cmd[cmd.index("-e") + 1] == "TOKEN"
        assert cmd[cmd.index("-w") + 1] == "/workspace/web"
        assert cmd[cmd.index("node:20") + 1:] == ["sh", "-e", "-c", "npm ci"]


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
class TestSubprocessRuntime:
    def test_exit_code_and_output(self, tmp_path: Path):
        result = SubprocessRuntime(tmp_path).execute("sh", "echo out; echo err >&2; exit 3", {})
        assert result.exit_code == 3
        assert "out" in result.output and "err" in result.output

    def test_only_explicit_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("LEAKY", "should-not-pass")
        result = SubprocessRuntime(tmp_path).execute("sh", 'echo "[$GIVEN][$LEAKY]"', {"GIVEN": "yes"})
        assert "[yes][]" in result.output

    def test_cwd(self, tmp_path: Path):
        (tmp_path / "sub").mkdir()
        result = SubprocessRuntime(tmp_path).execute("sh", "pwd", {}, cwd="sub")
        assert result.output.strip().endswith("sub")

    def test_missing_cwd(self, tmp_path: Path):
        with pytest.raises(ExecutionError):
            SubprocessRuntime(tmp_path).execute("sh", "true", {}, cwd="nope")
