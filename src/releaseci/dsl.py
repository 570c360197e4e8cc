# src/releaseci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .model import (
    ALL_EVENTS,
    ArtifactSpec,
    CacheSpec,
    EventKind,
    FailureHook,
    Guard,
    JobTemplate,
    MissingArtifacts,
    Pipeline,
    Step,
    Triggers,
    Variant,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    when: Guard | str = Guard.SUCCESS,
    optional: bool = False,
    only: Optional[Iterable[str]] = None,
) -> Step:
    """Create a shell step. `only` limits it to the named variants."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        guard=Guard(when),
        optional=optional,
        variants=tuple(only) if only is not None else None,
    )


def on_failure_step(name: str, cmd: str, **kw) -> Step:
    return sh(name, cmd, when=Guard.FAILURE, **kw)


def on_tag_step(name: str, cmd: str, **kw) -> Step:
    return sh(name, cmd, when=Guard.TAG, **kw)


# ---------------------------------------------------------------------
# Environment / cache / artifact helpers
# ---------------------------------------------------------------------

def variant(
    name: str,
    platform: str,
    *,
    runner: Optional[str] = None,
    container: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    **params,
) -> Variant:
    """Extra keyword arguments become `{{ name }}` params for the variant."""
    return Variant(
        name=name,
        platform=platform,
        runner=runner,
        container=container,
        # force values to str for stable hashing + env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
        params={k: str(v) for k, v in params.items()},
    )


def cache(purpose: str, *, paths: List[str], key_files: List[str], keep: int = 3) -> CacheSpec:
    return CacheSpec(purpose=purpose, paths=list(paths), inputs=list(key_files), keep=keep)


def artifact(name: str, *paths: str, only: Optional[Iterable[str]] = None) -> ArtifactSpec:
    """Declare a named artifact. `only` limits it to the named variants."""
    if not paths:
        raise ValueError(f"artifact({name!r}) needs at least one path")
    return ArtifactSpec(name=name, paths=list(paths), variants=tuple(only) if only is not None else None)


def on_failure(
    *diagnostics: str,
    debug_session: bool = False,
    secrets: Optional[List[str]] = None,
    region: Optional[str] = None,
) -> FailureHook:
    return FailureHook(
        diagnostics=list(diagnostics),
        debug_session=debug_session,
        secrets=list(secrets or []),
        region=region,
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def _events(run_on: Optional[Iterable[EventKind | str]]):
    if run_on is None:
        return ALL_EVENTS
    return frozenset(EventKind(e) for e in run_on)


def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    variants: List[Variant],
    artifacts: Optional[List[ArtifactSpec]] = None,
    caches: Optional[List[CacheSpec]] = None,
    env: Optional[Dict[str, str]] = None,
    failure: Optional[FailureHook] = None,
    required: bool = True,
    run_on: Optional[Iterable[EventKind | str]] = None,
    rebuild_on_tag: bool = True,
    missing_artifacts: MissingArtifacts | str = MissingArtifacts.WARN,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> JobTemplate:
    steps_final = list(steps)
    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")
    if not variants:
        raise ValueError(f"job({name!r}) must have at least one variant")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return JobTemplate(
        name=name,
        steps=steps_final,
        variants=list(variants),
        artifacts=list(artifacts or []),
        caches=list(caches or []),
        env={k: str(v) for k, v in (env or {}).items()},
        on_failure=failure,
        required=required,
        run_on=_events(run_on),
        rebuild_on_tag=rebuild_on_tag,
        missing_artifacts=MissingArtifacts(missing_artifacts),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._variants: list[Variant] = []
        self._artifacts: list[ArtifactSpec] = []
        self._caches: list[CacheSpec] = []
        self._env: dict[str, str] = {}
        self._failure: Optional[FailureHook] = None
        self._required: bool = True
        self._run_on = ALL_EVENTS
        self._rebuild_on_tag: bool = True
        self._missing = MissingArtifacts.WARN

    def define_step(self, name: str, run: str, cwd: str | None = None, **kw):
        self._steps.append(sh(name, run, cwd=cwd, **kw))
        return self

    def on_variant(self, v: Variant):
        self._variants.append(v)
        return self

    def with_cache(self, purpose: str, *, paths: List[str], key_files: List[str], keep: int = 3):
        self._caches.append(cache(purpose, paths=paths, key_files=key_files, keep=keep))
        return self

    def with_artifact(self, name: str, *paths: str, only: Optional[Iterable[str]] = None):
        self._artifacts.append(artifact(name, *paths, only=only))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def on_failure(self, hook: FailureHook):
        self._failure = hook
        return self

    def optional(self):
        self._required = False
        return self

    def run_on(self, *events: EventKind | str):
        self._run_on = _events(events)
        return self

    def publish_only_on_tag(self):
        self._rebuild_on_tag = False
        return self

    def strict_artifacts(self):
        self._missing = MissingArtifacts.ERROR
        return self

    def build(self) -> JobTemplate:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        if not self._variants:
            raise ValueError(f"Job '{self.name}' has no variants")
        return JobTemplate(
            name=self.name,
            steps=list(self._steps),
            variants=list(self._variants),
            artifacts=list(self._artifacts),
            caches=list(self._caches),
            env=dict(self._env),
            on_failure=self._failure,
            required=self._required,
            run_on=self._run_on,
            rebuild_on_tag=self._rebuild_on_tag,
            missing_artifacts=self._missing,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('linux').define_step(...).on_variant(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *jobs: JobTemplate,
    push_branches: Optional[List[str]] = None,
    tags: Optional[List[str]] = None,
    pull_request_branches: Optional[List[str]] = None,
    publish_tags: Optional[List[str]] = None,
    prerelease: bool = False,
    publish_on_partial_failure: bool = True,
) -> Pipeline:
    """
    Pipeline definition helper. Workflow files that define their own
    pipeline() function should import the `define` alias instead:

        from releaseci.dsl import define, job, sh, variant

        def pipeline():
            return define("build", job(...), tags=["v*"])

    Or define PIPELINE directly:
        PIPELINE = pipeline("build", job(...))
    """
    defaults = Triggers()
    triggers = Triggers(
        push_branches=list(push_branches) if push_branches is not None else defaults.push_branches,
        tag_patterns=list(tags) if tags is not None else defaults.tag_patterns,
        pull_request_branches=(
            list(pull_request_branches) if pull_request_branches is not None else defaults.pull_request_branches
        ),
        publish_tags=list(publish_tags) if publish_tags is not None else defaults.publish_tags,
    )
    return Pipeline(
        name=name,
        jobs=list(jobs),
        triggers=triggers,
        prerelease=prerelease,
        publish_on_partial_failure=publish_on_partial_failure,
    )


define = pipeline  # alias for workflow files that define their own pipeline()
