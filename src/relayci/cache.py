# cache.py
from __future__ import annotations

import hashlib
import io
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .codec import dumps_stable, sha256_str
from .errors import CacheError
from .model import CacheEntry
from .stores import BlobStore
from .ui.console import get_console

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Step-level dependency caching:
#   cache_key = namespace + "-" + sha256(
#       format version,
#       namespace,
#       (relpath, content digest) of every manifest file (lockfiles),
#       manifests that were declared but missing
#   )
#
# Same manifest bytes -> same key; any manifest change -> new key -> miss.
# The key never depends on the cached paths themselves.
#
# Cache artifact: a tar.gz of the entry's paths, relative to the workspace.
# Stores are append-if-absent, so a rerun can never overwrite a key.
# ---------------------------------------------------------------------

KEY_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(workspace: Path, patterns: Iterable[str]) -> Tuple[List[Path], List[str]]:
    """
    Expand patterns into concrete paths.
    Supports:
      - file path: "package-lock.json"
      - dir path:  "requirements/"
      - glob:      "**/poetry.lock"
    Returns (paths, patterns that matched nothing).
    """
    out: List[Path] = []
    unmatched: List[str] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = workspace / pat
        if p.exists():
            out.append(p)
            continue
        matches = [m for m in sorted(workspace.glob(pat)) if m.exists()]
        if not matches:
            unmatched.append(pat)
        out.extend(matches)

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq, unmatched


def compute_cache_key(entry: CacheEntry, workspace: str | Path) -> str:
    root = Path(workspace).resolve()
    resolved, missing = _resolve_globs(root, entry.manifests)

    file_fps: List[Tuple[str, str]] = []
    for p in resolved:
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            file_fps.append((_relpath(f, root), _hash_file_contents(f)))

    file_fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    payload = {
        "v": KEY_FORMAT_VERSION,
        "namespace": entry.namespace,
        "files": file_fps,
        "missing": sorted(missing),
    }
    return f"{entry.namespace}-{sha256_str(dumps_stable(payload))}"


# ---------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------

def pack_paths(paths: Iterable[str], workspace: str | Path) -> Optional[bytes]:
    """tar.gz the given workspace-relative paths; None when none of them exist."""
    root = Path(workspace).resolve()
    resolved, _missing = _resolve_globs(root, paths)
    if not resolved:
        return None

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for src in resolved:
            files = [src] if src.is_file() else list(_iter_files_under(src))
            for f in files:
                tar.add(str(f), arcname=_relpath(f, root), recursive=False)
    return buf.getvalue()


def unpack(data: bytes, workspace: str | Path) -> None:
    root = Path(workspace).resolve()
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            tar.extractall(path=str(root), filter="data")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise CacheError(CacheError.Kind.CORRUPT_ARCHIVE, f"cannot extract cache artifact: {e}") from e


# ---------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------

class CacheManager:
    """
    restore(entry) -> CacheHit (hit or miss, never raises)
    save(entry)    -> True when stored, False when skipped or already present

    Store failures degrade to a miss / skipped save with a warning.
    Restored or saved content is never printed.
    """

    def __init__(self, store: BlobStore):
        self.store = store

    def key_for(self, entry: CacheEntry, workspace: str | Path) -> str:
        return compute_cache_key(entry, workspace)

    def restore(self, entry: CacheEntry, workspace: str | Path, *, job: str = "") -> CacheHit:
        console = get_console()
        key = self.key_for(entry, workspace)

        try:
            data = self.store.get(key)
        except CacheError as e:
            console.print_warning(f"[{job}] cache store unavailable, continuing without cache: {e.message}")
            return CacheHit(hit=False, key=key, reason="store unavailable")

        if data is None:
            console.print_cache_miss(job, "no entry for key")
            return CacheHit(hit=False, key=key, reason="cache miss")

        try:
            unpack(data, workspace)
        except CacheError as e:
            console.print_warning(f"[{job}] {e.message}")
            return CacheHit(hit=False, key=key, reason="restore failed")

        console.print_cache_hit(job, key)
        return CacheHit(hit=True, key=key, reason="cache hit: restored artifact")

    def save(
        self,
        entry: CacheEntry,
        workspace: str | Path,
        *,
        key: Optional[str] = None,
        job: str = "",
    ) -> bool:
        """
        Persist entry.paths under `key` (the restore-time key when given).
        Re-saving an existing key is a no-op.
        """
        console = get_console()
        key = key or self.key_for(entry, workspace)

        data = pack_paths(entry.paths, workspace)
        if data is None:
            console.print_debug(f"[{job}] cache: nothing to save for {entry.namespace}")
            return False

        try:
            stored = self.store.put_if_absent(key, data)
        except CacheError as e:
            console.print_warning(f"[{job}] cache save skipped: {e.message}")
            return False

        if stored:
            console.print_cache_saved(job, key)
        else:
            console.print_debug(f"[{job}] cache: key already present, not overwritten")
        return stored
