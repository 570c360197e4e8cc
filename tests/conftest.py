from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from releaseci.errors import CIError, EnvironmentProvisionError
from releaseci.failure import DebugSession
from releaseci.model import ArtifactBundle
from releaseci.provision import LocalContext, Provisioner
from releaseci.publish import ReleaseHandle
from releaseci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    """Fresh console per test so recorded warnings never leak between tests."""
    c = Console()
    set_console(c)
    return c


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A small project checkout with lockfile and vendored deps."""
    root = tmp_path / "repo"
    (root / "deps").mkdir(parents=True)
    (root / "deps" / "ffmpeg.sh").write_text("build ffmpeg\n")
    (root / "deps" / "x264.sh").write_text("build x264\n")
    (root / "Cargo.lock").write_text("[[package]]\nname = \"app\"\n")
    (root / "src").mkdir()
    (root / "src" / "main.rs").write_text("fn main() {}\n")
    return root


class HostProvisioner(Provisioner):
    """Runs every variant on the host shell, except names listed as broken."""

    def __init__(self, broken: Optional[List[str]] = None):
        super().__init__(host_system="Linux")
        self.broken = set(broken or [])

    def provision(self, instance, workspace):
        if instance.name in self.broken:
            raise EnvironmentProvisionError(instance.name, "image pull failed")
        return LocalContext(instance, workspace)


class RecordingHost:
    def __init__(self, fail: bool = False):
        self.calls: List[tuple] = []
        self.fail = fail

    def publish(self, tag: str, bundles: List[ArtifactBundle], prerelease: bool = False) -> ReleaseHandle:
        from releaseci.errors import PublishError

        self.calls.append((tag, list(bundles), prerelease))
        if self.fail:
            raise PublishError(tag, "release host unavailable")
        assets = {f.name: "created" for b in bundles for f in b.files}
        return ReleaseHandle(tag=tag, url=f"memory://{tag}", assets=assets)


class RecordingTunnel:
    def __init__(self, fail: bool = False):
        self.sessions: List[tuple] = []
        self.fail = fail

    def open_session(self, job: str, credentials: Dict[str, str], region: Optional[str] = None) -> DebugSession:
        if self.fail:
            raise CIError(kind="debug_tunnel", job=job, step=None, message="tunnel refused")
        self.sessions.append((job, dict(credentials), region))
        return DebugSession(job=job, handle=f"ssh://{job}")


@pytest.fixture
def provisioner():
    return HostProvisioner()


@pytest.fixture
def host():
    return RecordingHost()


@pytest.fixture
def tunnel():
    return RecordingTunnel()
