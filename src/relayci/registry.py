# registry.py
from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar

from .codec import (
    composite_from_dict,
    composite_to_dict,
    definition_from_dict,
    definition_to_dict,
    dumps_stable,
    sha256_str,
)
from .errors import DefinitionError, IndexConflict, InvocationError, ResolutionError
from .loader import PINNED_VERSION, load, load_composite
from .model import CompositeAction, WorkflowDefinition

T = TypeVar("T")


class _SnapshotIndex(ABC, Generic[T]):
    """
    (path, version) -> canonical JSON snapshot.

    Snapshots are taken at publish time and decoded on every resolve, so
    later edits to the published object (or a newer version) can never leak
    into an existing pin. Re-publishing identical content is a no-op;
    different content under an existing version raises IndexConflict.
    """

    kind = "document"

    def __init__(
        self,
        to_dict: Callable[[T], Dict[str, Any]],
        from_dict: Callable[[Dict[str, Any]], T],
    ):
        self._to_dict = to_dict
        self._from_dict = from_dict
        self._snapshots: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _not_found(self, path: str, version: str) -> Exception:
        """The error raised when (path, version) was never published."""

    def publish(self, obj: T) -> str:
        path = getattr(obj, "path", "")
        version = getattr(obj, "version", "")
        if not path:
            raise DefinitionError(
                DefinitionError.Kind.MISSING_REQUIRED_FIELD,
                f"{self.kind} needs a path to be published",
            )
        if not PINNED_VERSION.match(version or ""):
            raise DefinitionError(
                DefinitionError.Kind.MUTABLE_REFERENCE,
                f"{self.kind} '{path}' must be published under an immutable version tag",
                details={"version": version},
            )

        snapshot = dumps_stable(self._to_dict(obj))
        with self._lock:
            existing = self._snapshots.get((path, version))
            if existing is not None and existing != snapshot:
                raise IndexConflict(f"{path}@{version} is already published with different content")
            self._snapshots[(path, version)] = snapshot
        return sha256_str(snapshot)

    def snapshot(self, path: str, version: str) -> str:
        with self._lock:
            snap = self._snapshots.get((path, version))
        if snap is None:
            raise self._not_found(path, version)
        return snap

    def resolve(self, path: str, version: str) -> T:
        return self._from_dict(json.loads(self.snapshot(path, version)))

    def versions(self, path: str) -> List[str]:
        with self._lock:
            return sorted(v for (p, v) in self._snapshots if p == path)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            return key in self._snapshots

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)


class WorkflowIndex(_SnapshotIndex[WorkflowDefinition]):
    kind = "workflow"

    def __init__(self):
        super().__init__(definition_to_dict, definition_from_dict)

    def _not_found(self, path: str, version: str) -> Exception:
        return InvocationError(
            InvocationError.Kind.VERSION_NOT_FOUND,
            f"reusable workflow {path}@{version} is not published",
            details={"known_versions": self.versions(path)},
        )


class ActionIndex(_SnapshotIndex[CompositeAction]):
    kind = "composite action"

    def __init__(self):
        super().__init__(composite_to_dict, composite_from_dict)

    def _not_found(self, path: str, version: str) -> Exception:
        return ResolutionError(
            ResolutionError.Kind.ACTION_NOT_FOUND,
            f"composite action {path}@{version} not found",
            details={"known_versions": self.versions(path)},
        )


def load_index(root: str | Path) -> Tuple[WorkflowIndex, ActionIndex]:
    """
    Load every published document under an index directory:
      root/
        workflows/*.json   reusable workflow definitions (path + version)
        actions/*.json     composite actions (path + version)
    """
    root_p = Path(root)
    workflows = WorkflowIndex()
    actions = ActionIndex()

    for f in sorted((root_p / "workflows").glob("*.json")):
        workflows.publish(load(f))
    for f in sorted((root_p / "actions").glob("*.json")):
        actions.publish(load_composite(f))

    return workflows, actions
