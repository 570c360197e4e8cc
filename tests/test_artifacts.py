from __future__ import annotations

from pathlib import Path

import pytest

from releaseci.artifacts import collect_artifacts
from releaseci.errors import ArtifactCollectionError, PublishError
from releaseci.model import ArtifactSpec, MissingArtifacts
from releaseci.publish import release_assets


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    (ws / "packages").mkdir(parents=True)
    (ws / "packages" / "app-linux.zip").write_bytes(b"zip")
    (ws / "packages" / "App_1.0_amd64.deb").write_bytes(b"deb")
    (ws / "bundle" / "osx").mkdir(parents=True)
    (ws / "bundle" / "osx" / "Info.plist").write_text("<plist/>")
    return ws


def test_collects_globbed_files(workspace: Path, tmp_path: Path):
    bundle = collect_artifacts(
        "build-linux",
        [ArtifactSpec("linux", ["packages/*.zip"]), ArtifactSpec("linux-deb", ["packages/App*.deb"])],
        workspace,
        tmp_path / "out",
    )
    assert bundle.job == "build-linux"
    assert sorted(f.name for f in bundle.files) == ["App_1.0_amd64.deb", "app-linux.zip"]
    for f in bundle.files:
        assert f.path.is_relative_to(tmp_path / "out")
        assert f.path.exists()


def test_directories_are_collected_recursively(workspace: Path, tmp_path: Path):
    bundle = collect_artifacts("build-macos", [ArtifactSpec("macos", ["bundle/osx"])], workspace, tmp_path / "out")
    assert [f.name for f in bundle.files] == ["Info.plist"]


def test_empty_match_warns_and_returns_empty_bundle(workspace: Path, tmp_path: Path, console):
    bundle = collect_artifacts(
        "build-linux", [ArtifactSpec("windows", ["packages/*.msi"])], workspace, tmp_path / "out"
    )
    assert len(bundle) == 0
    assert any("packages/*.msi" in w for w in console.warnings)
    assert any("empty" in w for w in console.warnings)


def test_error_policy_raises(workspace: Path, tmp_path: Path):
    with pytest.raises(ArtifactCollectionError) as e:
        collect_artifacts(
            "build-linux",
            [ArtifactSpec("windows", ["packages/*.msi"])],
            workspace,
            tmp_path / "out",
            MissingArtifacts.ERROR,
        )
    assert e.value.pattern == "packages/*.msi"


def test_no_declared_artifacts_is_quiet(workspace: Path, tmp_path: Path, console):
    bundle = collect_artifacts("build-linux", [], workspace, tmp_path / "out")
    assert len(bundle) == 0
    assert console.warnings == []


def test_same_named_outputs_from_different_dirs_are_both_kept(tmp_path: Path):
    ws = tmp_path / "ws"
    (ws / "a").mkdir(parents=True)
    (ws / "b").mkdir()
    (ws / "a" / "app.zip").write_bytes(b"AAA")
    (ws / "b" / "app.zip").write_bytes(b"BBB")

    bundle = collect_artifacts("build-linux", [ArtifactSpec("linux", ["a/app.zip", "b/app.zip"])], ws, tmp_path / "out")

    assert len(bundle) == 2
    assert sorted(f.path.read_bytes() for f in bundle.files) == [b"AAA", b"BBB"]
    assert {f.path.parent.name for f in bundle.files} == {"a", "b"}
    # flattened into release assets the two collide instead of one silently winning
    with pytest.raises(PublishError):
        release_assets("v1.0", [bundle])
