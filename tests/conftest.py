from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest


def _run_git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


@pytest.fixture
def git() -> Callable[..., str]:
    return _run_git


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    """Create a committed working copy, optionally pushed to a bare ``origin``."""

    def _make(name: str, *, branch: str = "main", with_origin: bool = True) -> Path:
        repo_root = tmp_path / name
        repo_root.mkdir()
        _run_git(repo_root, "init", "-b", branch)
        _run_git(repo_root, "config", "user.name", "Test")
        _run_git(repo_root, "config", "user.email", "test@example.com")
        _run_git(repo_root, "config", "commit.gpgsign", "false")
        (repo_root / "README.md").write_text(f"# {name}\n", encoding="utf-8")
        _run_git(repo_root, "add", "README.md")
        _run_git(repo_root, "commit", "-m", "init")

        if with_origin:
            remote = tmp_path / f"{name}.git"
            _run_git(tmp_path, "init", "--bare", "-b", branch, remote.as_posix())
            _run_git(repo_root, "remote", "add", "origin", remote.as_posix())
            _run_git(repo_root, "push", "-u", "origin", branch)
        return repo_root

    return _make
