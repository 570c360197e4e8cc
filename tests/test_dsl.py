from __future__ import annotations

import pytest

from releaseci.dsl import artifact, build, cache, define, job, on_failure, sh, variant
from releaseci.model import ALL_EVENTS, EventKind, Guard, MissingArtifacts


def test_sh_defaults():
    step = sh("Build", "make")
    assert step.guard == Guard.SUCCESS
    assert not step.optional
    assert step.variants is None


def test_job_applies_default_cwd():
    template = job(
        "build",
        sh("a", "make"),
        sh("b", "make", cwd="other"),
        variants=[variant("linux", "linux")],
        cwd="app",
    )
    assert [s.cwd for s in template.steps] == ["app", "other"]


def test_job_requires_steps_and_variants():
    with pytest.raises(ValueError):
        job("build", variants=[variant("linux", "linux")])
    with pytest.raises(ValueError):
        job("build", sh("a", "make"), variants=[])


def test_variant_params_are_strings():
    v = variant("linux", "linux", jobs=4, env={"N": 1})
    assert v.params == {"jobs": "4"}
    assert v.env == {"N": "1"}


def test_artifact_needs_a_path():
    with pytest.raises(ValueError):
        artifact("linux")


def test_builder_matches_functional_form():
    hook = on_failure("logs", debug_session=True, secrets=["SSH_PASS"], region="eu")
    built = (
        build("build")
        .define_step("Build", "make")
        .on_variant(variant("linux", "linux"))
        .with_cache("cargo", paths=["target"], key_files=["Cargo.lock"])
        .with_artifact("linux", "dist/*.zip")
        .with_env(CI=1)
        .on_failure(hook)
        .optional()
        .run_on("push", "tag")
        .publish_only_on_tag()
        .strict_artifacts()
        .build()
    )
    functional = job(
        "build",
        sh("Build", "make"),
        variants=[variant("linux", "linux")],
        caches=[cache("cargo", paths=["target"], key_files=["Cargo.lock"])],
        artifacts=[artifact("linux", "dist/*.zip")],
        env={"CI": 1},
        failure=hook,
        required=False,
        run_on=["push", "tag"],
        rebuild_on_tag=False,
        missing_artifacts="error",
    )
    assert built == functional
    assert built.run_on == frozenset({EventKind.PUSH, EventKind.TAG})
    assert built.missing_artifacts == MissingArtifacts.ERROR


def test_define_uses_default_triggers():
    p = define("Build", job("build", sh("a", "make"), variants=[variant("linux", "linux")]))
    assert p.triggers.push_branches == ["*"]
    assert p.triggers.tag_patterns == ["v*"]
    assert p.triggers.pull_request_branches == ["master"]
    assert p.jobs[0].run_on == ALL_EVENTS
    assert not p.prerelease
