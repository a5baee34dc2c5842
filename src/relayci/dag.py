# dag.py
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .errors import DefinitionError


def build_dag(needs: Mapping[str, Iterable[str]]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from a `name -> needs` mapping.

    Returns:
      adj:   dep -> dependents
      indeg: in-degree per node
    """
    adj: Dict[str, Set[str]] = {n: set() for n in needs}
    indeg: Dict[str, int] = {n: 0 for n in needs}

    for name, deps in needs.items():
        for dep in deps:
            if dep not in adj:
                raise DefinitionError(
                    DefinitionError.Kind.UNKNOWN_REFERENCE,
                    f"Job '{name}' needs missing job '{dep}'",
                    job=name,
                    details={"known_jobs": sorted(adj)},
                )
            # Edge dep -> name (dep must finish before name)
            if name not in adj[dep]:
                adj[dep].add(name)
                indeg[name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Nodes in one level have no ordering constraint between them.
    """
    remaining = dict(indeg)
    frontier = sorted(n for n, d in remaining.items() if d == 0)
    levels: List[List[str]] = []
    seen = 0

    while frontier:
        levels.append(frontier)
        seen += len(frontier)
        nxt: Set[str] = set()
        for node in frontier:
            for child in adj.get(node, ()):
                remaining[child] -= 1
                if remaining[child] == 0:
                    nxt.add(child)
        frontier = sorted(nxt)

    if seen != len(remaining):
        stuck = sorted(n for n, d in remaining.items() if d > 0)
        raise DefinitionError(
            DefinitionError.Kind.CYCLIC_DEPENDENCY,
            "job dependency graph has a cycle",
            details={"stuck": stuck},
        )

    return levels
