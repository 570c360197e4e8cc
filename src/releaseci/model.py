# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG = "tag"


class Guard(str, Enum):
    """When a step is allowed to run, relative to the job's state so far."""
    SUCCESS = "success"   # default: only while nothing required has failed
    FAILURE = "failure"   # only after a required step failed
    ALWAYS = "always"
    TAG = "tag"           # only on tag events, and only while nothing failed


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class MissingArtifacts(str, Enum):
    WARN = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    """A repository event as delivered by source control."""
    ref: str
    kind: EventKind
    is_tag: bool
    base_ref: Optional[str] = None  # target branch of a pull request

    @classmethod
    def from_ref(
        cls,
        ref: str,
        kind: EventKind | str | None = None,
        base_ref: Optional[str] = None,
    ) -> "Event":
        is_tag = ref.startswith(TAG_PREFIX)
        if kind is None:
            kind = EventKind.TAG if is_tag else EventKind.PUSH
        return cls(ref=ref, kind=EventKind(kind), is_tag=is_tag, base_ref=base_ref)

    @property
    def tag(self) -> Optional[str]:
        if not self.is_tag:
            return None
        return self.ref[len(TAG_PREFIX):]

    @property
    def branch(self) -> str:
        if self.ref.startswith(BRANCH_PREFIX):
            return self.ref[len(BRANCH_PREFIX):]
        return self.ref


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    guard: Guard = Guard.SUCCESS
    optional: bool = False                          # continue-on-error
    variants: Optional[Tuple[str, ...]] = None      # None -> every variant


@dataclass(frozen=True)
class Variant:
    """
    One environment a job template is expanded into.

    `platform` scopes the cache, `runner` names the host image family
    (ubuntu-latest, macos-latest, ...), `container` pins a docker image.
    `params` fill `{{ name }}` placeholders in commands and paths.
    """
    name: str
    platform: str
    runner: Optional[str] = None
    container: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheSpec:
    purpose: str
    paths: List[str]     # what gets stored / restored
    inputs: List[str]    # what the key is derived from
    keep: int = 3        # entries retained per scope


@dataclass(frozen=True)
class ArtifactSpec:
    name: str
    paths: List[str]
    variants: Optional[Tuple[str, ...]] = None      # None -> every variant


@dataclass(frozen=True)
class FailureHook:
    diagnostics: List[str] = field(default_factory=list)
    debug_session: bool = False
    secrets: List[str] = field(default_factory=list)   # env var names handed to the tunnel
    region: Optional[str] = None


ALL_EVENTS: FrozenSet[EventKind] = frozenset(EventKind)


@dataclass
class JobTemplate:
    """
    A job declared once and expanded over its variants.
    """
    name: str
    steps: List[Step]
    variants: List[Variant]

    artifacts: List[ArtifactSpec] = field(default_factory=list)
    caches: List[CacheSpec] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    on_failure: Optional[FailureHook] = None

    required: bool = True
    run_on: FrozenSet[EventKind] = ALL_EVENTS
    # False: on tag events only tag/always/failure guarded steps run
    rebuild_on_tag: bool = True
    missing_artifacts: MissingArtifacts = MissingArtifacts.WARN


@dataclass(frozen=True)
class Triggers:
    push_branches: List[str] = field(default_factory=lambda: ["*"])
    tag_patterns: List[str] = field(default_factory=lambda: ["v*"])
    pull_request_branches: List[str] = field(default_factory=lambda: ["master"])
    publish_tags: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class Pipeline:
    name: str
    jobs: List[JobTemplate]
    triggers: Triggers = field(default_factory=Triggers)
    prerelease: bool = False
    publish_on_partial_failure: bool = True


@dataclass(frozen=True)
class JobInstance:
    """A JobTemplate bound to one concrete variant."""
    template: JobTemplate
    variant: Variant
    steps: Tuple[Step, ...]
    caches: Tuple[CacheSpec, ...]
    artifacts: Tuple[ArtifactSpec, ...]
    env: Dict[str, str]

    @property
    def name(self) -> str:
        return f"{self.template.name}-{self.variant.name}"

    @property
    def required(self) -> bool:
        return self.template.required


@dataclass(frozen=True)
class StepRun:
    step: Step
    status: str              # "ok" | "failed" | "skipped"
    exit_code: Optional[int] = None
    output: str = ""


@dataclass(frozen=True)
class ArtifactFile:
    artifact: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ArtifactBundle:
    job: str
    files: Tuple[ArtifactFile, ...] = ()

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class Release:
    tag: str
    bundles: Tuple[ArtifactBundle, ...]
    prerelease: bool = False
    url: Optional[str] = None

    @property
    def files(self) -> List[ArtifactFile]:
        return [f for b in self.bundles for f in b.files]


@dataclass
class JobResult:
    instance: JobInstance
    outcome: Outcome
    step_runs: List[StepRun] = field(default_factory=list)
    bundle: Optional[ArtifactBundle] = None
    diagnostics: Optional[ArtifactBundle] = None
    error: Optional[str] = None
    cache_hits: Dict[str, bool] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.instance.name
