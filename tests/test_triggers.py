"""Tests for event -> definition matching."""

from __future__ import annotations

from relayci.dsl import job, on_manual, on_pull_request, on_push, on_tag, sh, wf
from relayci.model import Event, EventKind, Trigger
from relayci.triggers import activates, select_definitions, trigger_matches

CI = wf("ci", job("test", sh("test", "pytest")), on=[on_push("main", "release/*"), on_pull_request()])
RELEASE = wf("release", job("publish", sh("publish", "npm publish")), on=[on_tag("v*")])
MANUAL = wf("manual", job("adhoc", sh("adhoc", "true")), on=[on_manual()])


def push(ref: str, *, tag: bool = False) -> Event:
    return Event(EventKind.PUSH, ref, is_tag=tag)


class TestTriggerMatching:
    def test_tag_push_activates_only_release(self):
        event = push("refs/tags/v1.4.0", tag=True)
        assert event.effective_kind == EventKind.TAG_PUSH
        assert select_definitions([CI, RELEASE, MANUAL], event) == [RELEASE]

    def test_branch_push_activates_only_ci(self):
        assert select_definitions([CI, RELEASE, MANUAL], push("refs/heads/main")) == [CI]

    def test_branch_glob(self):
        assert activates(CI, push("refs/heads/release/2.x"))
        assert not activates(CI, push("refs/heads/feature/x"))

    def test_tag_filter_mismatch(self):
        assert not activates(RELEASE, push("refs/tags/nightly", tag=True))

    def test_pull_request_without_filter_matches_any_branch(self):
        assert activates(CI, Event(EventKind.PULL_REQUEST, "refs/heads/feature/x"))

    def test_manual(self):
        assert select_definitions([CI, RELEASE, MANUAL], Event(EventKind.MANUAL, "refs/heads/main")) == [MANUAL]

    def test_push_trigger_ignores_tag_push(self):
        assert not trigger_matches(Trigger(EventKind.PUSH), push("refs/tags/v1", tag=True))

    def test_definition_without_triggers_never_activates(self):
        silent = wf("silent", job("x", sh("x", "true")))
        assert not activates(silent, push("refs/heads/main"))

    def test_tag_push_kind_on_branch_ref_does_not_activate_release(self):
        assert not activates(RELEASE, Event(EventKind.TAG_PUSH, "refs/heads/feature"))

    def test_tag_push_kind_matches_tag_name_from_ref(self):
        assert activates(RELEASE, Event(EventKind.TAG_PUSH, "refs/tags/v2.1.0"))
        assert not activates(RELEASE, Event(EventKind.TAG_PUSH, "refs/tags/nightly"))

    def test_tag_ref_without_flag_is_a_tag_push(self):
        event = push("refs/tags/v1.0.0")
        assert event.effective_kind == EventKind.TAG_PUSH
        assert event.tag == "v1.0.0"
        assert event.branch is None


class TestFiltersForEveryKind:
    def test_manual_branch_filter(self):
        trigger = Trigger(EventKind.MANUAL, branches=("main",))
        assert trigger_matches(trigger, Event(EventKind.MANUAL, "refs/heads/main"))
        assert not trigger_matches(trigger, Event(EventKind.MANUAL, "refs/heads/feature"))

    def test_schedule_branch_filter(self):
        trigger = Trigger(EventKind.SCHEDULE, branches=("release/*",))
        assert trigger_matches(trigger, Event(EventKind.SCHEDULE, "refs/heads/release/3.x"))
        assert not trigger_matches(trigger, Event(EventKind.SCHEDULE, "refs/heads/main"))

    def test_workflow_call_branch_filter(self):
        trigger = Trigger(EventKind.WORKFLOW_CALL, branches=("main",))
        assert not trigger_matches(trigger, Event(EventKind.WORKFLOW_CALL, "refs/heads/dev"))

    def test_branch_filter_rejects_tag_ref(self):
        trigger = Trigger(EventKind.MANUAL, branches=("main",))
        assert not trigger_matches(trigger, Event(EventKind.MANUAL, "refs/tags/v1"))

    def test_manual_tag_filter(self):
        trigger = Trigger(EventKind.MANUAL, tags=("v*",))
        assert trigger_matches(trigger, Event(EventKind.MANUAL, "refs/tags/v1"))
        assert not trigger_matches(trigger, Event(EventKind.MANUAL, "refs/heads/main"))
