# triggers.py
from __future__ import annotations

from fnmatch import fnmatch
from typing import Iterable, List

from .model import Event, EventKind, Trigger, WorkflowDefinition


def _matches_any(value: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch(value, p) for p in patterns)


def _ref_matches(trigger: Trigger, event: Event) -> bool:
    if event.tag is not None:
        if trigger.branches and not trigger.tags:
            return False
        return not trigger.tags or _matches_any(event.tag, trigger.tags)

    if trigger.tags and not trigger.branches:
        return False
    return not trigger.branches or _matches_any(event.branch or "", trigger.branches)


def trigger_matches(trigger: Trigger, event: Event) -> bool:
    """
    True when `event` satisfies `trigger`.

    A tag push only matches tag_push triggers, a branch push only push
    triggers. For every kind, branch filters are matched against the branch
    of a branch ref and tag filters against the name of a tag ref. A trigger
    filtering only on the other kind of ref does not match; an empty filter
    matches anything.
    """
    kind = event.effective_kind
    if trigger.kind != kind:
        return False
    if kind == EventKind.TAG_PUSH and event.tag is None:
        return False
    return _ref_matches(trigger, event)


def activates(definition: WorkflowDefinition, event: Event) -> bool:
    return any(trigger_matches(t, event) for t in definition.triggers)


def select_definitions(definitions: Iterable[WorkflowDefinition], event: Event) -> List[WorkflowDefinition]:
    return [d for d in definitions if activates(d, event)]
