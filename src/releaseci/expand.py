# expand.py
from __future__ import annotations

import re
from dataclasses import replace
from typing import Dict, List, Set

from .errors import WorkflowError
from .model import ArtifactSpec, CacheSpec, JobInstance, JobTemplate, Pipeline, Step, Variant

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _params(variant: Variant) -> Dict[str, str]:
    # built-ins first so explicit params can override them
    params = {"variant": variant.name, "platform": variant.platform}
    params.update({k: str(v) for k, v in variant.params.items()})
    return params


def render(text: str, params: Dict[str, str]) -> str:
    """Fill `{{ name }}` placeholders. Unknown names are left as written."""
    return PLACEHOLDER.sub(lambda m: params.get(m.group(1), m.group(0)), text)


def _render_step(step: Step, params: Dict[str, str]) -> Step:
    return replace(
        step,
        name=render(step.name, params),
        run=render(step.run, params),
        cwd=render(step.cwd, params) if step.cwd else step.cwd,
    )


def expand(template: JobTemplate) -> List[JobInstance]:
    """
    One JobInstance per declared variant, in declaration order.

    Never fails for a declared variant: problems with the environment show up
    later as that instance's outcome, not here.
    """
    instances: List[JobInstance] = []
    for variant in template.variants:
        params = _params(variant)
        steps = tuple(
            _render_step(s, params)
            for s in template.steps
            if s.variants is None or variant.name in s.variants
        )
        caches = tuple(
            CacheSpec(
                purpose=render(c.purpose, params),
                paths=[render(p, params) for p in c.paths],
                inputs=[render(p, params) for p in c.inputs],
                keep=c.keep,
            )
            for c in template.caches
        )
        artifacts = tuple(
            ArtifactSpec(
                name=render(a.name, params),
                paths=[render(p, params) for p in a.paths],
                variants=a.variants,
            )
            for a in template.artifacts
            if a.variants is None or variant.name in a.variants
        )
        env = {**template.env, **variant.env}
        instances.append(
            JobInstance(
                template=template,
                variant=variant,
                steps=steps,
                caches=caches,
                artifacts=artifacts,
                env=env,
            )
        )
    return instances


def expand_pipeline(pipeline: Pipeline) -> List[JobInstance]:
    out: List[JobInstance] = []
    for template in pipeline.jobs:
        out.extend(expand(template))
    return out


def _unresolved(text: str) -> Set[str]:
    return {m.group(1) for m in PLACEHOLDER.finditer(text)}


def validate_pipeline(pipeline: Pipeline) -> List[JobInstance]:
    """
    Expand and check the whole pipeline before anything runs.

    Raises WorkflowError for duplicate job/instance names, templates without
    steps or variants, `only` filters naming variants the template lacks,
    and placeholders no variant param fills.
    """
    names = [t.name for t in pipeline.jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    for t in pipeline.jobs:
        if not t.steps:
            raise WorkflowError(f"Job '{t.name}' has no steps")
        if not t.variants:
            raise WorkflowError(f"Job '{t.name}' has no variants")
        declared = {v.name for v in t.variants}
        for item in [*t.steps, *t.artifacts]:
            unknown = sorted(set(item.variants or ()) - declared)
            if unknown:
                raise WorkflowError(f"Job '{t.name}': '{item.name}' is limited to unknown variants {unknown}")

    instances = expand_pipeline(pipeline)
    seen: Set[str] = set()
    for inst in instances:
        if inst.name in seen:
            raise WorkflowError(f"Duplicate job instance name: {inst.name}")
        seen.add(inst.name)

        texts = [s.run for s in inst.steps] + [s.name for s in inst.steps]
        texts += [a.name for a in inst.artifacts] + [p for a in inst.artifacts for p in a.paths]
        texts += [c.purpose for c in inst.caches] + [p for c in inst.caches for p in c.paths + c.inputs]
        missing = set().union(*(_unresolved(t) for t in texts)) if texts else set()
        if missing:
            raise WorkflowError(
                f"Job '{inst.name}' uses placeholders with no value: {sorted(missing)}",
                variant=inst.variant.name,
            )
    return instances
