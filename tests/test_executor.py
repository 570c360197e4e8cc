from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from releaseci.dsl import job, on_failure_step, on_tag_step, sh, variant
from releaseci.executor import execute_steps, first_failure, should_run
from releaseci.expand import expand
from releaseci.model import Event, Guard, Outcome, Triggers
from releaseci.provision import CommandResult, DockerContext, ExecutionContext, LocalContext, Provisioner
from releaseci.errors import EnvironmentProvisionError
from releaseci.trigger import evaluate

import pytest

BRANCH = evaluate(Event.from_ref("refs/heads/main"), Triggers())
TAG = evaluate(Event.from_ref("refs/tags/v1.0"), Triggers())


class ScriptedContext(ExecutionContext):
    """Exit codes by command; anything unlisted succeeds."""

    def __init__(self, instance, codes: Dict[str, int]):
        super().__init__(instance, Path("."))
        self.codes = codes
        self.ran: List[str] = []

    def run(self, command, cwd=None, env=None):
        self.ran.append(command)
        code = self.codes.get(command, 0)
        return CommandResult(exit_code=code, stderr="boom\n" if code else "")


def _instance(*steps, **kw):
    return expand(job("build", *steps, variants=[variant("linux", "linux")], **kw))[0]


def test_all_steps_succeed():
    inst = _instance(sh("a", "a"), sh("b", "b"))
    ctx = ScriptedContext(inst, {})
    outcome, runs = execute_steps(inst, ctx, BRANCH)
    assert outcome == Outcome.SUCCESS
    assert ctx.ran == ["a", "b"]
    assert [r.status for r in runs] == ["ok", "ok"]


def test_required_failure_cancels_later_steps_but_runs_failure_guarded():
    inst = _instance(
        sh("a", "a"),
        sh("b", "b"),
        sh("c", "c"),
        on_failure_step("collect logs", "logs"),
        sh("cleanup", "cleanup", when="always"),
    )
    ctx = ScriptedContext(inst, {"b": 2})
    outcome, runs = execute_steps(inst, ctx, BRANCH)

    assert outcome == Outcome.FAILED
    assert ctx.ran == ["a", "b", "logs", "cleanup"]
    assert [r.status for r in runs] == ["ok", "failed", "skipped", "ok", "ok"]
    assert first_failure(runs).step.name == "b"
    assert first_failure(runs).exit_code == 2


def test_failure_guarded_steps_skip_when_nothing_failed():
    inst = _instance(sh("a", "a"), on_failure_step("collect logs", "logs"))
    ctx = ScriptedContext(inst, {})
    outcome, runs = execute_steps(inst, ctx, BRANCH)
    assert outcome == Outcome.SUCCESS
    assert ctx.ran == ["a"]
    assert runs[1].status == "skipped"


def test_optional_step_failure_does_not_fail_the_job():
    inst = _instance(sh("lint", "lint", optional=True), sh("build", "build"))
    ctx = ScriptedContext(inst, {"lint": 1})
    outcome, runs = execute_steps(inst, ctx, BRANCH)
    assert outcome == Outcome.SUCCESS
    assert ctx.ran == ["lint", "build"]
    assert first_failure(runs) is None


def test_tag_guarded_steps_only_on_tags():
    inst = _instance(sh("build", "build"), on_tag_step("sign", "sign"))
    ctx = ScriptedContext(inst, {})
    execute_steps(inst, ctx, BRANCH)
    assert ctx.ran == ["build"]

    ctx = ScriptedContext(inst, {})
    execute_steps(inst, ctx, TAG)
    assert ctx.ran == ["build", "sign"]


def test_publish_only_templates_skip_the_build_on_tags():
    inst = _instance(sh("build", "build"), on_tag_step("sign", "sign"), rebuild_on_tag=False)
    ctx = ScriptedContext(inst, {})
    outcome, _ = execute_steps(inst, ctx, TAG)
    assert outcome == Outcome.SUCCESS
    assert ctx.ran == ["sign"]

    ctx = ScriptedContext(inst, {})
    execute_steps(inst, ctx, BRANCH)
    assert ctx.ran == ["build"]


def test_should_run_guard_table():
    step = sh("x", "x")
    assert should_run(step, failed=False, decision=BRANCH) == (True, "")
    assert should_run(step, failed=True, decision=BRANCH)[0] is False
    assert should_run(sh("x", "x", when=Guard.ALWAYS), failed=True, decision=BRANCH)[0] is True
    assert should_run(sh("x", "x", when=Guard.TAG), failed=True, decision=TAG)[0] is False


def test_local_context_runs_in_workspace_with_job_env(tmp_path: Path):
    inst = _instance(sh("a", "a"), env={"GREETING": "hi"})
    ctx = LocalContext(inst, tmp_path)
    res = ctx.run('echo "$GREETING" > out.txt')
    assert res.exit_code == 0
    assert (tmp_path / "out.txt").read_text().strip() == "hi"

    res = ctx.run("exit 4")
    assert res.exit_code == 4


def test_local_context_reports_missing_cwd(tmp_path: Path):
    inst = _instance(sh("a", "a"))
    res = LocalContext(inst, tmp_path).run("true", cwd="nope")
    assert res.exit_code == 127
    assert "cwd not found" in res.output


def test_docker_command_mounts_workspace(tmp_path: Path):
    inst = expand(
        job("build", sh("a", "a"), variants=[variant("linux", "linux", container="img:1")], env={"CI": "1"})
    )[0]
    cmd = DockerContext(inst, tmp_path, "img:1").docker_command("make", "sub", {})
    assert cmd[:3] == ["docker", "run", "--rm"]
    assert f"{tmp_path.resolve()}:/workspace" in cmd
    assert cmd[cmd.index("-w") + 1] == "/workspace/sub"
    assert "CI=1" in cmd
    assert cmd[-4:] == ["img:1", "bash", "-c", "make"]


def test_provisioner_rejects_foreign_runner(tmp_path: Path):
    inst = expand(job("build", sh("a", "a"), variants=[variant("macos", "macos", runner="macos-latest")]))[0]
    with pytest.raises(EnvironmentProvisionError) as e:
        Provisioner(host_system="Linux").provision(inst, tmp_path)
    assert e.value.job == "build-macos"


def test_provisioner_gives_host_variants_a_local_context(tmp_path: Path):
    inst = expand(job("build", sh("a", "a"), variants=[variant("linux", "linux", runner="ubuntu-latest")]))[0]
    assert isinstance(Provisioner(host_system="Linux").provision(inst, tmp_path), LocalContext)


class RaisingContext(ExecutionContext):
    """Fails to start the listed commands, the way a broken shell or undecodable output would."""

    def __init__(self, instance, broken: Dict[str, Exception]):
        super().__init__(instance, Path("."))
        self.broken = broken
        self.ran: List[str] = []

    def run(self, command, cwd=None, env=None):
        self.ran.append(command)
        if command in self.broken:
            raise self.broken[command]
        return CommandResult(exit_code=0)


def test_local_context_tolerates_non_utf8_output(tmp_path: Path):
    inst = _instance(sh("a", "a"))
    res = LocalContext(inst, tmp_path).run("printf '\\377\\376 binary'; exit 0")
    assert res.exit_code == 0
    assert "binary" in res.output
    assert "\ufffd" in res.output


def test_command_that_cannot_start_fails_its_step_only():
    inst = _instance(
        sh("build", "build"),
        sh("package", "package"),
        on_failure_step("collect logs", "logs"),
    )
    ctx = RaisingContext(inst, {"build": OSError("exec format error")})
    outcome, runs = execute_steps(inst, ctx, BRANCH)

    assert outcome == Outcome.FAILED
    assert ctx.ran == ["build", "logs"]
    assert [r.status for r in runs] == ["failed", "skipped", "ok"]
    assert runs[0].exit_code is None
    assert "exec format error" in runs[0].output


def test_undecodable_output_error_is_a_step_failure():
    inst = _instance(sh("build", "build"), on_failure_step("collect logs", "logs"))
    err = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
    ctx = RaisingContext(inst, {"build": err})
    outcome, runs = execute_steps(inst, ctx, BRANCH)
    assert outcome == Outcome.FAILED
    assert first_failure(runs).step.name == "build"
    assert runs[1].status == "ok"
