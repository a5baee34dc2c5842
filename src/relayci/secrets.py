# secrets.py
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Mapping, Optional, Protocol

from .errors import ExecutionError

MASK = "***"


class SecretNotFound(KeyError):
    pass


class SecretVault(Protocol):
    """External secret store: get(name) -> value, raising SecretNotFound."""

    def get(self, name: str) -> str: ...


class DictVault:
    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values = dict(values or {})

    def get(self, name: str) -> str:
        try:
            return self._values[name]
        except KeyError:
            raise SecretNotFound(name) from None

    def __repr__(self) -> str:
        return f"DictVault(names={sorted(self._values)})"


class EnvVault:
    """
    Reads secrets from the process environment, e.g. prefix="RELAYCI_SECRET_".
    When `names` is given, only those secrets are exposed.
    """

    def __init__(self, prefix: str = "", names: Optional[Iterable[str]] = None):
        self.prefix = prefix
        self.names = frozenset(names) if names is not None else None

    def get(self, name: str) -> str:
        if self.names is not None and name not in self.names:
            raise SecretNotFound(name)
        value = os.environ.get(self.prefix + name)
        if value is None:
            raise SecretNotFound(name)
        return value


class Secret:
    """A fetched secret value whose repr/str never shows the value."""

    __slots__ = ("name", "_value")

    def __init__(self, name: str, value: str):
        self.name = name
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Secret(name={self.name!r}, value={MASK!r})"

    __str__ = __repr__


def redact(text: str, values: Iterable[str]) -> str:
    """Mask every occurrence of each value (longest first)."""
    if not text:
        return text
    candidates = set()
    for v in values:
        if not v:
            continue
        candidates.add(v)
        # multi-line secrets are often echoed line by line
        candidates.update(line for line in v.splitlines() if len(line) > 3)
    for v in sorted(candidates, key=len, reverse=True):
        text = text.replace(v, MASK)
    return text


class SecretFrame:
    """Secrets bound for the duration of one step."""

    def __init__(self, secrets: Dict[str, Secret]):
        self._secrets = secrets

    @property
    def names(self) -> list[str]:
        return sorted(self._secrets)

    def env(self) -> Dict[str, str]:
        return {name: s.reveal() for name, s in self._secrets.items()}

    def redact(self, text: str) -> str:
        return redact(text, (s.reveal() for s in self._secrets.values()))

    def close(self) -> None:
        self._secrets.clear()


class SecretScope:
    """
    The enumerable set of secret names available to one Run, backed by a
    vault. Values are fetched lazily per step and never cached.
    """

    def __init__(self, vault: SecretVault, names: Iterable[str] = ()):
        self.vault = vault
        self.names = frozenset(names)

    def narrowed(self, names: Iterable[str]) -> "SecretScope":
        return SecretScope(self.vault, self.names & frozenset(names))

    @contextmanager
    def frame(
        self,
        requested: Iterable[str],
        *,
        job: Optional[str] = None,
        step: Optional[str] = None,
    ) -> Iterator[SecretFrame]:
        requested = sorted(set(requested))
        outside = [n for n in requested if n not in self.names]
        if outside:
            raise ExecutionError(
                ExecutionError.Kind.SECRET_NOT_FOUND,
                "step requests secrets outside the run's scope",
                job=job,
                step=step,
                details={"secrets": outside},
            )

        fetched: Dict[str, Secret] = {}
        for name in requested:
            try:
                fetched[name] = Secret(name, self.vault.get(name))
            except SecretNotFound:
                raise ExecutionError(
                    ExecutionError.Kind.SECRET_NOT_FOUND,
                    f"secret '{name}' not found in vault",
                    job=job,
                    step=step,
                ) from None

        frame = SecretFrame(fetched)
        try:
            yield frame
        finally:
            frame.close()

    def __repr__(self) -> str:
        return f"SecretScope(names={sorted(self.names)})"
