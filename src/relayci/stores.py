# stores.py
from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

import redis

from .errors import CacheError

# ---------------------------------------------------------------------
# Blob stores backing the cache manager.
#   get(key)                 -> bytes | None (miss)
#   put_if_absent(key, data) -> True if stored, False if key existed
# Failures to reach the store raise CacheError(STORE_UNAVAILABLE).
# ---------------------------------------------------------------------


class BlobStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put_if_absent(self, key: str, data: bytes) -> bool: ...


class MemoryBlobStore:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(key)

    def put_if_absent(self, key: str, data: bytes) -> bool:
        with self._lock:
            if key in self._blobs:
                return False
            self._blobs[key] = bytes(data)
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)


class FileBlobStore:
    """
    File-based store:
      root/
        <key>.tar.gz
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()
        self._lock = threading.Lock()

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{key}.tar.gz"

    def get(self, key: str) -> Optional[bytes]:
        art = self.artifact_path(key)
        try:
            if not art.exists():
                return None
            return art.read_bytes()
        except OSError as e:
            raise CacheError(
                CacheError.Kind.STORE_UNAVAILABLE,
                f"cannot read cache artifact: {e}",
                details={"key": key},
            ) from e

    def put_if_absent(self, key: str, data: bytes) -> bool:
        art = self.artifact_path(key)
        tmp = art.with_suffix(".tmp")
        try:
            with self._lock:
                if art.exists():
                    return False
                self.root.mkdir(parents=True, exist_ok=True)
                # write tmp, then atomic rename
                tmp.write_bytes(data)
                tmp.replace(art)
                return True
        except OSError as e:
            raise CacheError(
                CacheError.Kind.STORE_UNAVAILABLE,
                f"cannot write cache artifact: {e}",
                details={"key": key},
            ) from e
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)


class RedisBlobStore:
    """Blobs stored as redis string values; SET NX gives append-if-absent."""

    def __init__(self, client: "redis.Redis", *, prefix: str = "relayci:cache:", ttl_seconds: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisBlobStore":
        return cls(redis.Redis.from_url(url), **kwargs)

    def blob_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.client.get(self.blob_key(key))
        except redis.RedisError as e:
            raise CacheError(
                CacheError.Kind.STORE_UNAVAILABLE,
                f"redis get failed: {e}",
                details={"key": key},
            ) from e

    def put_if_absent(self, key: str, data: bytes) -> bool:
        try:
            stored = self.client.set(self.blob_key(key), data, nx=True, ex=self.ttl_seconds)
        except redis.RedisError as e:
            raise CacheError(
                CacheError.Kind.STORE_UNAVAILABLE,
                f"redis set failed: {e}",
                details={"key": key},
            ) from e
        return bool(stored)
