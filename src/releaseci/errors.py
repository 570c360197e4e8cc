# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-job result records
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class EnvironmentProvisionError(CIError):
    """The job's environment could not be materialized. Fatal to that job only."""

    def __init__(self, job: str, message: str, **details):
        super().__init__(kind="environment_provision", job=job, step=None, message=message, details=details)


class StepExecutionError(CIError):
    def __init__(self, job: str, step: str, cmd: str, exit_code: Optional[int], output: str = ""):
        super().__init__(
            kind="step_failed",
            job=job,
            step=step,
            message=f"step '{step}' failed (exit={exit_code}): {cmd}",
            details={"exit_code": exit_code},
        )
        self.cmd = cmd
        self.exit_code = exit_code
        self.output = output


class CacheIOError(CIError):
    """Cache read/write failed. Callers treat this as a miss and keep going."""

    def __init__(self, message: str, key: str = "", job: str = ""):
        details = {"key": key} if key else {}
        super().__init__(kind="cache_io", job=job, step=None, message=message, details=details)
        self.key = key


class ArtifactCollectionError(CIError):
    def __init__(self, job: str, pattern: str, artifact: str):
        super().__init__(
            kind="artifact_missing",
            job=job,
            step=None,
            message=f"artifact '{artifact}' pattern matched nothing: {pattern}",
            details={"pattern": pattern},
        )
        self.pattern = pattern


class PublishError(CIError):
    """Release publishing failed. Never changes the outcome of the jobs being published."""

    def __init__(self, tag: str, message: str, **details):
        super().__init__(kind="publish_failed", job="", step=None, message=message, details={"tag": tag, **details})
        self.tag = tag


class WorkflowError(CIError):
    def __init__(self, message: str, **details):
        super().__init__(kind="workflow_invalid", job="", step=None, message=message, details=details)
