# failure.py
from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

from .artifacts import gather
from .errors import CIError
from .model import ArtifactBundle, ArtifactSpec, FailureHook, JobInstance
from .ui.console import get_console


@dataclass(frozen=True)
class DebugSession:
    job: str
    handle: str


class DebugTunnel(Protocol):
    """External interactive-debug service. Its own policy decides how long a session lives."""

    def open_session(self, job: str, credentials: Dict[str, str], region: Optional[str] = None) -> DebugSession:
        ...


class HttpDebugTunnel:
    """Asks a tunnel service to open a session; does not wait for it to end."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    def open_session(self, job: str, credentials: Dict[str, str], region: Optional[str] = None) -> DebugSession:
        payload = {"job": job, "credentials": credentials}
        if region:
            payload["region"] = region
        req = urllib.request.Request(
            self.url + "/sessions",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
            data = json.loads(body) if body else {}
        except (urllib.error.URLError, OSError, ValueError) as e:
            raise CIError(kind="debug_tunnel", job=job, step=None, message=f"could not open debug session: {e}")
        return DebugSession(job=job, handle=str(data.get("session", data.get("url", ""))))


def _credentials(hook: FailureHook) -> Dict[str, str]:
    return {name: os.environ[name] for name in hook.secrets if name in os.environ}


def run_failure_hook(
    instance: JobInstance,
    hook: FailureHook,
    workspace: Path,
    diagnostics_dir: Path,
    tunnel: Optional[DebugTunnel] = None,
) -> Optional[ArtifactBundle]:
    """
    Side channel for a failed job: keep diagnostics in the run output and
    optionally open a debug session. Never changes the job's outcome.
    """
    console = get_console()
    bundle: Optional[ArtifactBundle] = None

    if hook.diagnostics:
        spec = ArtifactSpec(name=f"{instance.name}-diagnostics", paths=list(hook.diagnostics))
        bundle = gather(instance.name, [spec], workspace, diagnostics_dir)
        console.print_info(f"[{instance.name}] diagnostics: {len(bundle.files)} file(s) kept in {diagnostics_dir}")

    if hook.debug_session:
        if tunnel is None:
            console.print_warning(f"[{instance.name}] debug session requested but no tunnel is configured")
        else:
            missing = [s for s in hook.secrets if s not in os.environ]
            if missing:
                console.print_warning(f"[{instance.name}] debug session secrets not set: {missing}")
            try:
                session = tunnel.open_session(instance.name, _credentials(hook), hook.region)
                console.print_info(f"[{instance.name}] debug session opened: {session.handle}")
            except CIError as e:
                console.print_warning(f"[{instance.name}] {e.message}")

    return bundle
