from __future__ import annotations

import pytest

from releaseci.dsl import artifact, cache, define, job, sh, variant
from releaseci.errors import WorkflowError
from releaseci.expand import expand, render, validate_pipeline


def _template(**kw):
    return job(
        "build",
        sh("Build {{ variant }}", "make TARGET={{ target }}"),
        sh("Bundle", "make bundle", only=["macos"]),
        variants=[
            variant("linux", "linux", container="img/linux", target="x86_64-unknown-linux-gnu"),
            variant("linux-alpine", "linux", container="img/alpine", target="x86_64-unknown-linux-musl"),
            variant("macos", "macos", runner="macos-latest", target="aarch64-apple-darwin", env={"SDK": "14"}),
        ],
        caches=[cache("cargo", paths=["target"], key_files=["Cargo.lock"])],
        artifacts=[artifact("{{ variant }}", "dist/{{ target }}.tar.gz")],
        env={"CI": "1", "SDK": "13"},
        **kw,
    )


def test_every_variant_becomes_exactly_one_instance():
    instances = expand(_template())
    assert [i.name for i in instances] == ["build-linux", "build-linux-alpine", "build-macos"]


def test_placeholders_are_filled_from_variant_params():
    linux = expand(_template())[0]
    assert linux.steps[0].name == "Build linux"
    assert linux.steps[0].run == "make TARGET=x86_64-unknown-linux-gnu"
    assert linux.artifacts[0].name == "linux"
    assert linux.artifacts[0].paths == ["dist/x86_64-unknown-linux-gnu.tar.gz"]


def test_variant_only_steps_are_filtered():
    linux, alpine, mac = expand(_template())
    assert [s.name for s in linux.steps] == ["Build linux"]
    assert [s.name for s in mac.steps] == ["Build macos", "Bundle"]


def test_variant_env_overrides_template_env():
    linux, _, mac = expand(_template())
    assert linux.env == {"CI": "1", "SDK": "13"}
    assert mac.env == {"CI": "1", "SDK": "14"}


def test_unknown_placeholders_are_left_alone_by_render():
    assert render("{{ a }}-{{ b }}", {"a": "x"}) == "x-{{ b }}"


def test_validate_rejects_unfilled_placeholders():
    template = job("build", sh("b", "make {{ missing }}"), variants=[variant("linux", "linux")])
    with pytest.raises(WorkflowError) as e:
        validate_pipeline(define("p", template))
    assert "missing" in e.value.message


def test_validate_rejects_duplicate_job_names():
    a = job("build", sh("b", "true"), variants=[variant("linux", "linux")])
    b = job("build", sh("b", "true"), variants=[variant("macos", "macos")])
    with pytest.raises(WorkflowError):
        validate_pipeline(define("p", a, b))


def test_validate_rejects_colliding_instance_names():
    a = job("build-linux", sh("b", "true"), variants=[variant("x", "linux")])
    b = job("build", sh("b", "true"), variants=[variant("linux-x", "linux")])
    with pytest.raises(WorkflowError):
        validate_pipeline(define("p", a, b))


def test_validate_returns_instances_in_declaration_order():
    instances = validate_pipeline(define("p", _template()))
    assert len(instances) == 3
    assert instances[-1].variant.name == "macos"


def test_variant_only_artifacts_are_filtered():
    template = job(
        "build",
        sh("Build", "make"),
        variants=[variant("linux", "linux"), variant("linux-alpine", "linux"), variant("macos", "macos")],
        artifacts=[
            artifact("{{ variant }}", "dist/*.tar.gz"),
            artifact("linux-deb", "packages/*.deb", only=["linux"]),
            artifact("macOS", "bundle/macOS.zip", only=["macos"]),
        ],
    )
    linux, alpine, mac = expand(template)
    assert [a.name for a in linux.artifacts] == ["linux", "linux-deb"]
    assert [a.name for a in alpine.artifacts] == ["linux-alpine"]
    assert [a.name for a in mac.artifacts] == ["macos", "macOS"]
    assert mac.artifacts[1].paths == ["bundle/macOS.zip"]


def test_validate_rejects_only_filters_for_undeclared_variants():
    template = job(
        "build",
        sh("b", "true"),
        variants=[variant("linux", "linux")],
        artifacts=[artifact("win", "packages/*.zip", only=["windows"])],
    )
    with pytest.raises(WorkflowError) as e:
        validate_pipeline(define("p", template))
    assert "windows" in e.value.message

    template = job("build", sh("b", "true", only=["mac"]), variants=[variant("macos", "macos")])
    with pytest.raises(WorkflowError):
        validate_pipeline(define("p", template))
