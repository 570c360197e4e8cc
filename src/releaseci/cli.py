# cli.py
from __future__ import annotations

import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

from releaseci import settings
from releaseci.cache import CacheStore, cache_scope, derive_cache_key
from releaseci.errors import WorkflowError
from releaseci.expand import validate_pipeline
from releaseci.failure import HttpDebugTunnel
from releaseci.git_facts.git import get_current_ref, get_remote_url
from releaseci.model import Event, EventKind
from releaseci.publish import DirectoryReleaseHost, HttpReleaseHost
from releaseci.runner import load_workflow, plan_pipeline, run_pipeline
from releaseci.ui.console import Console, get_console, set_console

EVENT_CHOICES = click.Choice([k.value for k in EventKind])


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / settings.DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  releaseci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {settings.DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create a workflow file:\n  {settings.DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion=f"Specify a workflow explicitly:\n  releaseci run --workflow {settings.DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    return workflow_files[0]


def resolve_event(ref: Optional[str], kind: Optional[str], base_ref: Optional[str]) -> Event:
    """Build the triggering event, asking git for the ref when none is given."""
    console = get_console()
    if not ref:
        try:
            ref = get_current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref specified and git could not resolve HEAD.",
                suggestion="Please specify --ref explicitly:\n  releaseci run --ref refs/heads/main",
            )
            sys.exit(1)
    if not ref.startswith("refs/") and kind != EventKind.PULL_REQUEST.value:
        # bare names are branches unless they were asked to be tags
        ref = f"refs/tags/{ref}" if kind == EventKind.TAG.value else f"refs/heads/{ref}"
    return Event.from_ref(ref, kind=kind, base_ref=base_ref)


def _load(ctx, workflow: Optional[str]):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except (WorkflowError, FileNotFoundError, SyntaxError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)


def event_options(fn):
    fn = click.option("--base-ref", default=None, help="Target branch of a pull request")(fn)
    fn = click.option("--event", "event_kind", type=EVENT_CHOICES, default=None, help="Event kind (inferred from --ref)")(fn)
    fn = click.option("--ref", default=None, help="Git ref that triggered the run (defaults to HEAD)")(fn)
    fn = click.option(
        "--workflow",
        default=None,
        help=f"Workflow file path (defaults to {settings.DEFAULT_WORKFLOW} if present)",
    )(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """releaseci: multi-target build and release pipelines."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@event_options
@click.option("--workers", default=settings.WORKERS, type=int, envvar="RELEASECI_WORKERS", help="Number of parallel jobs")
@click.option("--cache-dir", default=settings.CACHE_DIR, envvar="RELEASECI_CACHE_DIR", show_default=True, help="Cache directory")
@click.option("--cache/--no-cache", "use_cache", default=True, help="Restore and save dependency caches")
@click.option("--run-dir", default=settings.RUN_DIR, envvar="RELEASECI_RUN_DIR", show_default=True, help="Where run output goes")
@click.option("--release-dir", default=settings.RELEASE_DIR, envvar="RELEASECI_RELEASE_DIR", show_default=True, help="Publish releases into this directory")
@click.option("--release-api", default=settings.RELEASE_API, envvar="RELEASECI_RELEASE_API", help="Publish releases to this release-host API instead")
@click.option("--release-token", default=settings.RELEASE_TOKEN, envvar="RELEASECI_RELEASE_TOKEN", help="Bearer token for --release-api")
@click.option("--tunnel-url", default=settings.TUNNEL_URL, envvar="RELEASECI_TUNNEL_URL", help="Debug tunnel service for failed jobs")
@click.option("--isolate/--no-isolate", default=True, show_default=True, help="Give every job its own copy of the repository")
@click.option("--keep-workspaces", is_flag=True, default=False, help="Keep job workspaces after the run")
@click.pass_context
def run(
    ctx,
    workflow,
    ref,
    event_kind,
    base_ref,
    workers,
    cache_dir,
    use_cache,
    run_dir,
    release_dir,
    release_api,
    release_token,
    tunnel_url,
    isolate,
    keep_workspaces,
):
    """Run a pipeline for a repository event."""
    console = get_console()
    workflow_path, pipeline = _load(ctx, workflow)
    event = resolve_event(ref, event_kind, base_ref)

    try:
        try:
            repo_url = get_remote_url("origin")
            repo_name = repo_url.rstrip("/").split("/")[-1].replace(".git", "")
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo_name = Path(".").resolve().name

        console.print_run_started(
            repository=repo_name,
            workflow=workflow_path.name,
            ref=event.ref,
            job_count=sum(len(j.variants) for j in pipeline.jobs),
        )

        if release_api:
            host = HttpReleaseHost(release_api, token=release_token)
        else:
            host = DirectoryReleaseHost(release_dir)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        result = run_pipeline(
            pipeline,
            event,
            repo_root=".",
            run_dir=Path(run_dir) / stamp,
            cache=CacheStore(cache_dir) if use_cache else None,
            host=host,
            tunnel=HttpDebugTunnel(tunnel_url) if tunnel_url else None,
            max_workers=workers,
            isolate=isolate,
            keep_workspaces=keep_workspaces,
        )

        console.print_results(result)
        if result.status == "failed":
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@event_options
@click.pass_context
def plan(ctx, workflow, ref, event_kind, base_ref):
    """Show which jobs an event would run and whether it would publish."""
    console = get_console()
    _path, pipeline = _load(ctx, workflow)
    event = resolve_event(ref, event_kind, base_ref)
    try:
        decision, entries = plan_pipeline(pipeline, event)
    except WorkflowError as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_trigger(decision)
    for inst, runs, reason in entries:
        console.print_plan_job(inst.name, reason if runs else f"skipped: {reason}")


@cli.command("cache-key")
@click.option("--workflow", default=None, help="Workflow file path")
@click.option("--job", "job_name", default=None, help="Only this job instance (e.g. build-linux)")
@click.option("--repo-root", default=".", show_default=True, help="Directory the cache inputs are read from")
@click.pass_context
def cache_key(ctx, workflow, job_name, repo_root):
    """Print the cache keys each job instance would use."""
    console = get_console()
    _path, pipeline = _load(ctx, workflow)
    try:
        instances = validate_pipeline(pipeline)
    except WorkflowError as e:
        console.print_exception(e)
        sys.exit(1)

    if job_name:
        instances = [i for i in instances if i.name == job_name]
        if not instances:
            console.print_error("Unknown job", f"No job instance named {job_name!r}")
            sys.exit(1)

    for inst in instances:
        for spec in inst.caches:
            key = derive_cache_key(spec.inputs, cache_scope(inst, spec), repo_root)
            console.print_info(f"{inst.name} {spec.purpose} {key.value}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
