# executor.py
from __future__ import annotations

import subprocess
from typing import List, Optional, Tuple

from .model import Guard, JobInstance, Outcome, Step, StepRun
from .provision import CommandResult, ExecutionContext
from .trigger import TriggerDecision
from .ui.console import get_console


def should_run(step: Step, failed: bool, decision: TriggerDecision, rebuild_on_tag: bool = True) -> Tuple[bool, str]:
    """
    Evaluate a step's guard against the job state so far.
    Returns (run?, reason-when-skipped).
    """
    guard = step.guard
    if guard == Guard.ALWAYS:
        return True, ""
    if guard == Guard.FAILURE:
        return (True, "") if failed else (False, "no prior failure")
    if failed:
        return False, "cancelled after failure"
    if guard == Guard.TAG:
        return (True, "") if decision.is_tag else (False, "not a tag event")
    # Guard.SUCCESS
    if decision.is_tag and not rebuild_on_tag:
        return False, "publish-only on tag events"
    return True, ""


def execute_steps(
    instance: JobInstance,
    context: ExecutionContext,
    decision: TriggerDecision,
) -> Tuple[Outcome, List[StepRun]]:
    """
    Run the instance's steps strictly in order.

    A required step failing marks the job failed and cancels later
    success-guarded steps; failure/always guarded steps still run. Optional
    steps may fail without touching the outcome.
    """
    console = get_console()
    runs: List[StepRun] = []
    failed = False
    failed_step: Optional[str] = None

    for step in instance.steps:
        ok_to_run, why = should_run(step, failed, decision, instance.template.rebuild_on_tag)
        if not ok_to_run:
            console.print_step_skipped(instance.name, step.name, why)
            runs.append(StepRun(step=step, status="skipped"))
            continue

        console.print_step(instance.name, step.name)
        try:
            result = context.run(step.run, cwd=step.cwd)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            # the command never produced an exit status; it still counts as this step failing
            result = CommandResult(exit_code=None, stderr=f"{type(e).__name__}: {e}")
        if result.exit_code == 0:
            runs.append(StepRun(step=step, status="ok", exit_code=0, output=result.output))
            continue

        runs.append(StepRun(step=step, status="failed", exit_code=result.exit_code, output=result.output))
        console.print_step_failed(instance.name, step.name, result.exit_code, result.output, optional=step.optional)
        if not step.optional and not failed:
            failed = True
            failed_step = step.name

    if failed:
        console.print_debug(f"[{instance.name}] first required failure: {failed_step}")
        return Outcome.FAILED, runs
    return Outcome.SUCCESS, runs


def first_failure(runs: List[StepRun]) -> Optional[StepRun]:
    for r in runs:
        if r.status == "failed" and not r.step.optional:
            return r
    return None
