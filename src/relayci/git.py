# git.py
# Thin wrapper around the Git CLI, used by the CLI to build the default
# event (ref, sha) when none is given on the command line.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Run git and return stdout stripped of surrounding whitespace.
    A non-zero exit raises subprocess.CalledProcessError.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> str:
    """
    Full ref of the checkout: refs/heads/<branch>, or refs/tags/<tag> when
    HEAD is detached exactly on a tag, else the bare sha.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch != "HEAD":
        return f"refs/heads/{branch}"
    try:
        tag = _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)
    return f"refs/tags/{tag}"
