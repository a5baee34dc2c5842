# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .invoker import DEFAULT_MAX_NESTING

CACHE_DIR = ".relayci/cache"
INDEX_DIR = ".relayci/index"


def _int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    cache_dir: str = CACHE_DIR
    index_dir: str = INDEX_DIR
    redis_url: Optional[str] = None
    max_workers: Optional[int] = None
    max_nesting: int = DEFAULT_MAX_NESTING
    secret_prefix: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            cache_dir=env.get("RELAYCI_CACHE_DIR", CACHE_DIR),
            index_dir=env.get("RELAYCI_INDEX_DIR", INDEX_DIR),
            redis_url=env.get("RELAYCI_REDIS_URL") or None,
            max_workers=_int(env, "RELAYCI_MAX_WORKERS"),
            max_nesting=_int(env, "RELAYCI_MAX_NESTING") or DEFAULT_MAX_NESTING,
            secret_prefix=env.get("RELAYCI_SECRET_PREFIX", ""),
        )
