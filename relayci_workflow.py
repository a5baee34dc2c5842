# relayci_workflow.py
# Workflow for relayci itself: tests across interpreters, then a wheel build
from __future__ import annotations

from relayci.dsl import cache, job, matrix, on_pull_request, on_push, sh, wf
from relayci.dsl import concurrency as group


def workflow():
    pip_cache = cache("pip", manifests=["pyproject.toml"], paths=[".venv"])

    return wf(
        "relayci",
        job(
            "test",
            sh("Create venv", "python${{ matrix.python }} -m venv .venv", cache=pip_cache),
            sh("Install package", ".venv/bin/pip install -e '.[test]'"),
            sh("Run pytest", ".venv/bin/pytest -q"),
            matrix=matrix(python=["3.10", "3.11", "3.12"]),
        ),
        job(
            "build",
            sh("Build wheel", "python -m pip wheel --no-deps -w dist ."),
            needs=["test"],
        ),
        on=[on_push("main"), on_pull_request("main")],
        concurrency=group("${{ workflow }}-${{ ref }}"),
    )
