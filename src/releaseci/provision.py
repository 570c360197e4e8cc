# provision.py
from __future__ import annotations

import os
import platform as host_platform
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .errors import EnvironmentProvisionError
from .model import JobInstance

OUTPUT_TAIL = 4000
CONTAINER_WORKDIR = "/workspace"

# runner label prefix -> platform.system() value it needs
RUNNER_SYSTEMS = {
    "ubuntu": "Linux",
    "linux": "Linux",
    "macos": "Darwin",
    "windows": "Windows",
}

TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "sh": "A POSIX shell is required to run steps locally.",
}


@dataclass(frozen=True)
class CommandResult:
    exit_code: Optional[int]   # None: the command could not be started
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr)[-OUTPUT_TAIL:]


class ExecutionContext:
    """Somewhere a job's step commands can run."""

    def __init__(self, instance: JobInstance, workspace: Path):
        self.instance = instance
        self.workspace = workspace

    def run(self, command: str, cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> CommandResult:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LocalContext(ExecutionContext):
    """Runs steps with the host shell, inside the job's workspace."""

    def run(self, command: str, cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> CommandResult:
        work = (self.workspace / (cwd or ".")).resolve()
        if not work.exists():
            return CommandResult(exit_code=127, stderr=f"cwd not found: {work}")

        full_env = os.environ.copy()
        full_env.update(self.instance.env)
        full_env.update(env or {})

        proc = subprocess.run(
            command,
            shell=True,
            cwd=str(work),
            env=full_env,
            text=True,
            encoding="utf-8",
            errors="replace",   # build tools print arbitrary bytes
            capture_output=True,   # so the output can be shown on failure
        )
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


class DockerContext(ExecutionContext):
    """Runs each step in a throwaway container with the workspace mounted at /workspace."""

    def __init__(self, instance: JobInstance, workspace: Path, image: str):
        super().__init__(instance, workspace)
        self.image = image

    def docker_command(self, command: str, cwd: Optional[str], env: Dict[str, str]) -> list[str]:
        cmd = ["docker", "run", "--rm"]
        cmd.extend(["-v", f"{self.workspace.resolve()}:{CONTAINER_WORKDIR}"])

        step_cwd = cwd or "."
        container_cwd = f"{CONTAINER_WORKDIR}/{step_cwd}".replace("//", "/")
        cmd.extend(["-w", container_cwd])

        # only the job's declared env crosses into the container
        for key, value in {**self.instance.env, **env}.items():
            cmd.extend(["-e", f"{key}={value}"])

        cmd.append(self.image)
        cmd.extend(["bash", "-c", command])
        return cmd

    def run(self, command: str, cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> CommandResult:
        proc = subprocess.run(
            self.docker_command(command, cwd, env or {}),
            shell=False,
            text=True,
            encoding="utf-8",
            errors="replace",
            capture_output=True,
        )
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def runner_system(runner: Optional[str]) -> Optional[str]:
    if not runner:
        return None
    family = runner.lower().split("-")[0]
    return RUNNER_SYSTEMS.get(family)


class Provisioner:
    """
    Materializes a job's environment.

    Container variants need a working docker CLI; host variants need the
    runner's OS to be the host OS. Anything else is an
    EnvironmentProvisionError for that one job.
    """

    def __init__(self, host_system: Optional[str] = None):
        self.host_system = host_system or host_platform.system()

    def _check_docker_available(self, instance: JobInstance) -> None:
        try:
            subprocess.run(["docker", "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            raise EnvironmentProvisionError(
                instance.name,
                "Docker is not available",
                hint=TOOL_HINTS["docker"],
            )

    def provision(self, instance: JobInstance, workspace: Path) -> ExecutionContext:
        variant = instance.variant
        if variant.container:
            self._check_docker_available(instance)
            image = variant.container.removeprefix("docker://")
            return DockerContext(instance, workspace, image)

        needed = runner_system(variant.runner)
        if needed is not None and needed != self.host_system:
            raise EnvironmentProvisionError(
                instance.name,
                f"runner '{variant.runner}' needs a {needed} host, this host is {self.host_system}",
                runner=variant.runner,
            )
        return LocalContext(instance, workspace)
