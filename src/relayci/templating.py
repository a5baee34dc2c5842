# templating.py
from __future__ import annotations

import re
from typing import Any, Mapping

# ${{ inputs.node_version }}  /  ${{ ref }}
EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)*)\s*\}\}")


def _lookup(values: Mapping[str, Any], dotted: str) -> Any:
    cur: Any = values
    for part in dotted.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            raise KeyError(dotted)
        cur = cur[part]
    return cur


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def render(template: str, values: Mapping[str, Any]) -> str:
    """Substitute every ${{ name }} expression; unknown names raise KeyError."""
    return EXPR.sub(lambda m: _to_text(_lookup(values, m.group(1))), template)
