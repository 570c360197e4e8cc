# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import List, Optional

from .model import Event, EventKind, JobTemplate, Triggers


@dataclass(frozen=True)
class TriggerDecision:
    """
    Computed once per run and handed unchanged to every job, so no job
    can observe a different trigger state than another.
    """
    runs: bool
    should_publish: bool
    is_tag: bool
    tag: Optional[str]
    reason: str


def _matches_any(value: str, patterns: List[str]) -> bool:
    return any(fnmatch(value, p) for p in patterns)


def evaluate(event: Event, triggers: Triggers) -> TriggerDecision:
    """Decide whether the pipeline runs for `event` and whether it publishes."""
    if event.is_tag:
        tag = event.tag or ""
        runs = _matches_any(tag, triggers.tag_patterns)
        reason = f"tag {tag!r} {'matches' if runs else 'does not match'} {triggers.tag_patterns}"
        publish = runs and _matches_any(tag, triggers.publish_tags)
        return TriggerDecision(runs=runs, should_publish=publish, is_tag=True, tag=tag, reason=reason)

    if event.kind == EventKind.PULL_REQUEST:
        target = event.base_ref or event.ref
        branch = Event.from_ref(target).branch
        patterns = triggers.pull_request_branches
    else:
        branch = event.branch
        patterns = triggers.push_branches

    runs = _matches_any(branch, patterns)
    reason = f"{event.kind.value} to {branch!r} {'matches' if runs else 'does not match'} {patterns}"
    return TriggerDecision(runs=runs, should_publish=False, is_tag=False, tag=None, reason=reason)


def job_runs_on(template: JobTemplate, event: Event) -> bool:
    """A tag push is also a push: templates listing only `push` still run on tags."""
    if event.kind in template.run_on:
        return True
    return event.kind == EventKind.TAG and EventKind.PUSH in template.run_on
