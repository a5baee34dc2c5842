# inputs.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .model import InputSpec


@dataclass
class BoundInputs:
    values: Dict[str, Any] = field(default_factory=dict)
    unknown: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    mistyped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.unknown or self.missing or self.mistyped)


def _coerce(spec: InputSpec, value: Any) -> Any:
    """Return the value in the declared type, or raise ValueError."""
    if spec.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValueError(value)
    if spec.type == "number":
        if isinstance(value, bool):
            raise ValueError(value)
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return int(value)
            except ValueError:
                return float(value)
        raise ValueError(value)
    if isinstance(value, (dict, list)):
        raise ValueError(value)
    return value if isinstance(value, str) else str(value)


def bind_inputs(declared: Mapping[str, InputSpec], provided: Mapping[str, Any]) -> BoundInputs:
    """Apply defaults, check required inputs and coerce to declared types."""
    bound = BoundInputs()
    bound.unknown = sorted(set(provided) - set(declared))

    for name, spec in declared.items():
        if name in provided:
            value = provided[name]
        elif spec.default is not None:
            value = spec.default
        elif spec.required:
            bound.missing.append(name)
            continue
        else:
            # optional and unset: renders as an empty string
            bound.values[name] = None
            continue

        try:
            bound.values[name] = _coerce(spec, value)
        except ValueError:
            bound.mistyped.append(name)

    return bound
