from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence


class GitError(RuntimeError):
    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def _run_git(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise GitError("git CLI not found (install git and ensure it's on PATH).") from e

    if check and completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        stdout = (completed.stdout or "").strip()
        details = stderr or stdout or "<no output>"
        raise GitError(
            f"git {' '.join(args)} failed (exit={completed.returncode}): {details}",
            returncode=completed.returncode,
            stderr=stderr,
        )
    return completed


def git_remote_url(*, repo_root: Path, remote: str = "origin") -> str | None:
    completed = _run_git(["remote", "get-url", remote], cwd=repo_root, check=False)
    if completed.returncode != 0:
        return None
    url = (completed.stdout or "").strip()
    return url or None


def git_is_dirty(*, repo_root: Path) -> bool:
    completed = _run_git(["status", "--porcelain"], cwd=repo_root, check=True)
    return bool((completed.stdout or "").strip())


def git_current_branch(*, repo_root: Path) -> str | None:
    """Checked-out branch name, or None when HEAD is detached."""
    completed = _run_git(["symbolic-ref", "--short", "-q", "HEAD"], cwd=repo_root, check=False)
    if completed.returncode != 0:
        return None
    branch = (completed.stdout or "").strip()
    return branch or None


def git_remote_head_branch(*, repo_root: Path, remote: str = "origin") -> str | None:
    completed = _run_git(
        ["symbolic-ref", "--short", "-q", f"refs/remotes/{remote}/HEAD"],
        cwd=repo_root,
        check=False,
    )
    if completed.returncode != 0:
        return None
    ref = (completed.stdout or "").strip()
    prefix = f"{remote}/"
    if ref.startswith(prefix):
        ref = ref[len(prefix) :]
    return ref or None


def git_set_remote_head(*, repo_root: Path, branch: str, remote: str = "origin") -> None:
    _run_git(
        ["symbolic-ref", f"refs/remotes/{remote}/HEAD", f"refs/remotes/{remote}/{branch}"],
        cwd=repo_root,
        check=True,
    )


def git_branch_exists(*, repo_root: Path, branch: str) -> bool:
    completed = _run_git(
        ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
        cwd=repo_root,
        check=False,
    )
    return completed.returncode == 0


def git_rev_parse(*, repo_root: Path, ref: str = "HEAD") -> str:
    completed = _run_git(["rev-parse", ref], cwd=repo_root, check=True)
    value = (completed.stdout or "").strip()
    if not value:
        raise GitError(f"git rev-parse {ref!r} returned empty output.")
    return value


def git_stage_paths(*, repo_root: Path, paths: Sequence[str]) -> None:
    _run_git(["add", "--", *paths], cwd=repo_root, check=True)


def git_unstage_paths(*, repo_root: Path, paths: Sequence[str]) -> None:
    _run_git(["reset", "-q", "--", *paths], cwd=repo_root, check=True)


def git_checkout_paths(*, repo_root: Path, paths: Sequence[str]) -> None:
    _run_git(["checkout", "--", *paths], cwd=repo_root, check=True)


def git_path_in_head(*, repo_root: Path, path: str) -> bool:
    completed = _run_git(["cat-file", "-e", f"HEAD:{path}"], cwd=repo_root, check=False)
    return completed.returncode == 0


def git_has_staged_changes(*, repo_root: Path) -> bool:
    completed = _run_git(["diff", "--cached", "--quiet"], cwd=repo_root, check=False)
    if completed.returncode not in (0, 1):
        stderr = (completed.stderr or "").strip()
        raise GitError(
            f"git diff --cached --quiet failed (exit={completed.returncode}): {stderr or '<no output>'}",
            returncode=completed.returncode,
            stderr=stderr,
        )
    return completed.returncode == 1


def git_commit(*, repo_root: Path, message: str, allow_empty: bool = False) -> str:
    args = ["commit", "-m", message]
    if allow_empty:
        args.insert(1, "--allow-empty")
    _run_git(args, cwd=repo_root, check=True)
    return git_rev_parse(repo_root=repo_root)


def git_push(*, repo_root: Path, branch: str, remote: str = "origin") -> None:
    _run_git(["push", remote, f"HEAD:refs/heads/{branch}"], cwd=repo_root, check=True)
