# runner.py
from __future__ import annotations

import os
import runpy
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .artifacts import collect_artifacts
from .cache import CacheKey, CacheStore, PutResult, cache_scope, derive_cache_key
from .errors import CacheIOError, CIError, EnvironmentProvisionError, PublishError, StepExecutionError, WorkflowError
from .executor import execute_steps, first_failure
from .expand import validate_pipeline
from .failure import DebugTunnel, run_failure_hook
from .model import ArtifactBundle, Event, JobInstance, JobResult, Outcome, Pipeline, Release, Variant
from .provision import ExecutionContext, Provisioner
from .publish import ReleaseHost, publish_release, successful_bundles
from .trigger import TriggerDecision, evaluate, job_runs_on
from .ui.console import get_console


# ----------------------------------------------------------------------
# Run aggregate
# ----------------------------------------------------------------------

@dataclass
class PipelineRun:
    """
    Overall state of one pipeline run, folded from terminal job results.

    Created when the run starts; finalize() is called exactly once, after
    every job and the publisher are done. Status is only meaningful then.
    """
    pipeline: str
    event: Event
    decision: TriggerDecision
    results: List[JobResult] = field(default_factory=list)
    release: Optional[Release] = None
    publish_error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    finalized: bool = False

    def record(self, result: JobResult) -> None:
        if self.finalized:
            raise RuntimeError(f"run already finalized, cannot record {result.name}")
        self.results.append(result)

    def finalize(
        self,
        release: Optional[Release] = None,
        publish_error: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> "PipelineRun":
        if self.finalized:
            raise RuntimeError("run already finalized")
        self.release = release
        self.publish_error = publish_error
        self.warnings = list(warnings or [])
        self.finalized = True
        return self

    @property
    def status(self) -> str:
        if not self.finalized:
            return "running"
        if not self.decision.runs:
            return "skipped"
        if self.publish_error:
            return "failed"
        if any(r.outcome == Outcome.FAILED and r.instance.required for r in self.results):
            return "failed"
        return "success"

    @property
    def bundles(self) -> List[ArtifactBundle]:
        """Ordinary run output, whether or not a release was published."""
        return successful_bundles(self.results)

    @property
    def diagnostics(self) -> List[ArtifactBundle]:
        return [r.diagnostics for r in self.results if r.diagnostics is not None]

    def result(self, name: str) -> JobResult:
        for r in self.results:
            if r.name == name:
                return r
        raise KeyError(name)


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise WorkflowError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"releaseci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result = None
    if callable(globals_dict.get("pipeline")):
        result = globals_dict["pipeline"]()
    elif "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]

    if not isinstance(result, Pipeline):
        raise WorkflowError(
            "Workflow must return/define a Pipeline. "
            "Define pipeline() -> Pipeline or PIPELINE = Pipeline(...).",
            path=str(wf_path),
        )
    return result


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def plan_pipeline(pipeline: Pipeline, event: Event) -> Tuple[TriggerDecision, List[Tuple[JobInstance, bool, str]]]:
    """What a run for `event` would do, without running anything."""
    decision = evaluate(event, pipeline.triggers)
    instances = validate_pipeline(pipeline)
    plan: List[Tuple[JobInstance, bool, str]] = []
    for inst in instances:
        if not decision.runs:
            plan.append((inst, False, "pipeline not triggered"))
        elif not job_runs_on(inst.template, event):
            plan.append((inst, False, f"not configured for {event.kind.value} events"))
        else:
            plan.append((inst, True, describe_environment(inst.variant)))
    return decision, plan


def describe_environment(variant: Variant) -> str:
    if variant.container:
        return f"container {variant.container}"
    return f"runner {variant.runner or 'host'}"


# ----------------------------------------------------------------------
# Job lifecycle
# ----------------------------------------------------------------------

def _prepare_workspace(repo_root: Path, run_dir: Path, instance: JobInstance, isolate: bool) -> Path:
    if not isolate:
        return repo_root
    dest = run_dir / "workspaces" / instance.name
    skip = {run_dir.resolve()}

    def _ignore(directory: str, names: List[str]) -> List[str]:
        return [
            n for n in names
            if n in (".git", ".releaseci") or (Path(directory) / n).resolve() in skip
        ]

    try:
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(repo_root, dest, ignore=_ignore, symlinks=True)
    except OSError as e:
        raise EnvironmentProvisionError(instance.name, f"could not prepare workspace: {e}")
    return dest


def _restore_caches(
    instance: JobInstance,
    cache: CacheStore,
    workspace: Path,
    result: JobResult,
) -> Dict[str, CacheKey]:
    """Derive every cache key and restore hits. Cache trouble is a warning and a miss."""
    console = get_console()
    keys: Dict[str, CacheKey] = {}
    for spec in instance.caches:
        try:
            key = derive_cache_key(spec.inputs, cache_scope(instance, spec), workspace)
            keys[spec.purpose] = key
            hit = cache.restore(key, workspace)
        except (CacheIOError, OSError) as e:
            console.print_warning(f"[{instance.name}] cache {spec.purpose} unavailable, running cold: {e}")
            result.cache_hits[spec.purpose] = False
            continue
        result.cache_hits[spec.purpose] = hit.hit
        if hit.hit:
            console.print_cache_hit(instance.name, spec.purpose, key.value)
        else:
            console.print_cache_miss(instance.name, spec.purpose, key.value)
    return keys


def _save_caches(instance: JobInstance, cache: CacheStore, workspace: Path, keys: Dict[str, CacheKey]) -> None:
    console = get_console()
    for spec in instance.caches:
        key = keys.get(spec.purpose)
        if key is None:
            continue
        try:
            outcome = cache.save(key, spec, workspace)
            if outcome == PutResult.OK:
                cache.prune(key.scope, keep=spec.keep)
        except (CacheIOError, OSError) as e:
            console.print_warning(f"[{instance.name}] cache {spec.purpose} not saved: {e}")
            continue
        console.print_cache_saved(instance.name, spec.purpose, key.value, outcome.value)


def run_job(
    instance: JobInstance,
    decision: TriggerDecision,
    *,
    repo_root: Path,
    run_dir: Path,
    cache: Optional[CacheStore],
    provisioner: Provisioner,
    tunnel: Optional[DebugTunnel] = None,
    isolate: bool = True,
    keep_workspace: bool = False,
) -> JobResult:
    """
    provision -> cache restore -> steps -> (failed) failure hook
    -> (success) artifacts -> (success) cache save

    Every error stays inside the returned JobResult; nothing escapes to
    sibling jobs.
    """
    console = get_console()
    console.print_job_start(instance.name, describe_environment(instance.variant))
    result = JobResult(instance=instance, outcome=Outcome.FAILED)
    workspace: Optional[Path] = None
    context: Optional[ExecutionContext] = None

    try:
        workspace = _prepare_workspace(repo_root, run_dir, instance, isolate)
        context = provisioner.provision(instance, workspace)
        keys = _restore_caches(instance, cache, workspace, result) if cache is not None else {}

        outcome, runs = execute_steps(instance, context, decision)
        result.step_runs = runs
        result.outcome = outcome

        if outcome == Outcome.FAILED:
            failed = first_failure(runs)
            if failed is not None:
                result.error = str(
                    StepExecutionError(instance.name, failed.step.name, failed.step.run, failed.exit_code, failed.output)
                )
        else:
            result.bundle = collect_artifacts(
                instance.name,
                instance.artifacts,
                workspace,
                run_dir / "artifacts" / instance.name,
                instance.template.missing_artifacts,
            )
            if cache is not None:
                _save_caches(instance, cache, workspace, keys)
    except CIError as e:
        result.outcome = Outcome.FAILED
        result.error = str(e)
    except Exception as e:
        result.outcome = Outcome.FAILED
        result.error = f"{type(e).__name__}: {e}"
    finally:
        if context is not None:
            context.close()

    if result.outcome == Outcome.FAILED:
        console.print_job_failure(instance.name, result.error or "failed")
        hook = instance.template.on_failure
        if hook is not None and workspace is not None:
            try:
                result.diagnostics = run_failure_hook(
                    instance, hook, workspace, run_dir / "diagnostics" / instance.name, tunnel
                )
            except (CIError, OSError) as e:
                console.print_warning(f"[{instance.name}] failure hook error: {e}")

    if workspace is not None and isolate and not keep_workspace:
        shutil.rmtree(workspace, ignore_errors=True)

    console.print_job_finished(instance.name, result.outcome.value)
    return result


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    repo_root: str | Path = ".",
    run_dir: str | Path = ".releaseci/runs/latest",
    cache: Optional[CacheStore] = None,
    host: Optional[ReleaseHost] = None,
    tunnel: Optional[DebugTunnel] = None,
    provisioner: Optional[Provisioner] = None,
    max_workers: int | None = None,
    isolate: bool = True,
    keep_workspaces: bool = False,
) -> PipelineRun:
    console = get_console()
    repo_root_p = Path(repo_root).resolve()
    run_dir_p = Path(run_dir).resolve()
    run_dir_p.mkdir(parents=True, exist_ok=True)
    provisioner = provisioner or Provisioner()
    warnings_start = len(console.warnings)

    decision = evaluate(event, pipeline.triggers)
    console.print_trigger(decision)
    run = PipelineRun(pipeline=pipeline.name, event=event, decision=decision)
    if not decision.runs:
        return run.finalize()

    instances = validate_pipeline(pipeline)

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    completed: Dict[int, JobResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        in_flight = {}
        for idx, inst in enumerate(instances):
            if not job_runs_on(inst.template, event):
                console.print_job_skipped(inst.name, f"not configured for {event.kind.value} events")
                completed[idx] = JobResult(instance=inst, outcome=Outcome.SKIPPED)
                continue
            fut = pool.submit(
                run_job,
                inst,
                decision,
                repo_root=repo_root_p,
                run_dir=run_dir_p,
                cache=cache,
                provisioner=provisioner,
                tunnel=tunnel,
                isolate=isolate,
                keep_workspace=keep_workspaces,
            )
            in_flight[fut] = idx

        for fut in as_completed(in_flight):
            idx = in_flight[fut]
            try:
                completed[idx] = fut.result()
            except Exception as e:
                completed[idx] = JobResult(instance=instances[idx], outcome=Outcome.FAILED, error=str(e))

    # barrier: every job has a terminal outcome from here on
    for idx in sorted(completed):
        run.record(completed[idx])

    release: Optional[Release] = None
    publish_error: Optional[str] = None
    try:
        release = publish_release(
            decision,
            run.results,
            host,
            prerelease=pipeline.prerelease,
            publish_on_partial_failure=pipeline.publish_on_partial_failure,
        )
    except PublishError as e:
        publish_error = e.message
        console.print_error("Release not published", str(e))
    except OSError as e:
        publish_error = str(e)
        console.print_error("Release not published", str(e))

    return run.finalize(release, publish_error, console.warnings[warnings_start:])
