from .dsl import artifact, build, cache, define, job, on_failure, pipeline, sh, variant, JobBuilder
from .model import Event, EventKind, Guard, Outcome, Pipeline, JobTemplate, Step, Variant
from .runner import PipelineRun, load_workflow, run_pipeline

__all__ = [
    "artifact",
    "build",
    "cache",
    "define",
    "job",
    "on_failure",
    "pipeline",
    "sh",
    "variant",
    "JobBuilder",
    "Event",
    "EventKind",
    "Guard",
    "Outcome",
    "Pipeline",
    "JobTemplate",
    "Step",
    "Variant",
    "PipelineRun",
    "load_workflow",
    "run_pipeline",
]
