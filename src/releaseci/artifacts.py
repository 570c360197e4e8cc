# artifacts.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, List

from .cache import resolve_patterns
from .errors import ArtifactCollectionError
from .model import ArtifactBundle, ArtifactFile, ArtifactSpec, MissingArtifacts
from .ui.console import get_console


def _stage(src: Path, workspace: Path, dest_dir: Path) -> List[Path]:
    """
    Copy a matched file or directory into dest_dir, keeping its
    workspace-relative path so same-named outputs never overwrite each other.
    Returns the staged files.
    """
    try:
        rel = src.resolve().relative_to(workspace.resolve())
    except ValueError:
        rel = Path(src.name)
    dest = dest_dir / rel
    dest.parent.mkdir(parents=True, exist_ok=True)
    if src.is_file():
        shutil.copy2(src, dest)
        return [dest]
    shutil.copytree(src, dest, dirs_exist_ok=True)
    return sorted(p for p in dest.rglob("*") if p.is_file())


def gather(
    job: str,
    specs: Iterable[ArtifactSpec],
    workspace: Path,
    staging_dir: Path,
    policy: MissingArtifacts = MissingArtifacts.WARN,
) -> ArtifactBundle:
    """
    Copy every path matched by `specs` out of the workspace into
    staging_dir/<artifact>/ and return them as one bundle.

    A pattern that matches nothing is a warning under WARN and an
    ArtifactCollectionError under ERROR.
    """
    console = get_console()
    files: List[ArtifactFile] = []
    for spec in specs:
        for pattern in spec.paths:
            matches = resolve_patterns(workspace, [pattern])
            if not matches:
                if policy == MissingArtifacts.ERROR:
                    raise ArtifactCollectionError(job=job, pattern=pattern, artifact=spec.name)
                console.print_warning(f"[{job}] artifact '{spec.name}': no files match {pattern!r}")
                continue
            for m in matches:
                for staged in _stage(m, workspace, staging_dir / spec.name):
                    files.append(ArtifactFile(artifact=spec.name, path=staged))
    return ArtifactBundle(job=job, files=tuple(files))


def collect_artifacts(
    job: str,
    specs: Iterable[ArtifactSpec],
    workspace: Path,
    staging_dir: Path,
    policy: MissingArtifacts = MissingArtifacts.WARN,
) -> ArtifactBundle:
    """Bundle the outputs of a successful job. Callers only invoke this for Success outcomes."""
    specs = list(specs)
    bundle = gather(job, specs, workspace, staging_dir, policy)
    if specs and not bundle.files:
        get_console().print_warning(f"[{job}] artifact bundle is empty")
    return bundle
