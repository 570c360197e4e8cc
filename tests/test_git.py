from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from releaseci.git_facts.git import get_current_ref, head_sha

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    _git(tmp_path, "init", "-q", "-b", "main")
    _git(tmp_path, "config", "user.email", "ci@example.com")
    _git(tmp_path, "config", "user.name", "ci")
    (tmp_path / "README").write_text("hi\n")
    _git(tmp_path, "add", "README")
    _git(tmp_path, "commit", "-q", "-m", "init")
    return tmp_path


def test_branch_checkout_gives_heads_ref(git_repo: Path):
    assert get_current_ref(cwd=str(git_repo)) == "refs/heads/main"


def test_detached_on_tag_gives_tags_ref(git_repo: Path):
    _git(git_repo, "tag", "v1.0")
    _git(git_repo, "checkout", "-q", "--detach", "v1.0")
    assert get_current_ref(cwd=str(git_repo)) == "refs/tags/v1.0"


def test_detached_without_tag_gives_sha(git_repo: Path):
    _git(git_repo, "checkout", "-q", "--detach")
    assert get_current_ref(cwd=str(git_repo)) == head_sha(cwd=str(git_repo))
