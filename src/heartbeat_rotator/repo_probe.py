from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from heartbeat_rotator.config import RotatorConfig
from heartbeat_rotator.git_subprocess import (
    GitError,
    git_branch_exists,
    git_current_branch,
    git_is_dirty,
    git_remote_head_branch,
    git_remote_url,
)

logger = logging.getLogger(__name__)

_FALLBACK_BRANCHES: tuple[str, ...] = ("main", "master")


@dataclass(frozen=True, slots=True)
class PreflightResult:
    ok: bool
    errors: tuple[str, ...]
    branch: str | None
    identity: str | None = None


def identify(repo_path: Path) -> str:
    """Stable history key: the origin URL, else the symlink-resolved path.

    Changing a repo's origin URL changes its identity, so its history starts over.
    """
    url = git_remote_url(repo_root=repo_path)
    if url:
        return url
    return str(repo_path.resolve())


def default_branch(repo_path: Path) -> str | None:
    remote_head = git_remote_head_branch(repo_root=repo_path)
    if remote_head:
        return remote_head
    for candidate in _FALLBACK_BRANCHES:
        if git_branch_exists(repo_root=repo_path, branch=candidate):
            return candidate
    return git_current_branch(repo_root=repo_path)


def matching_exclusion(*, repo_path: Path, identity: str, patterns: tuple[str, ...]) -> str | None:
    path_str = str(repo_path)
    for pattern in patterns:
        if pattern in path_str or pattern in identity:
            return pattern
    return None


def preflight(repo_path: Path, config: RotatorConfig) -> PreflightResult:
    if not repo_path.exists():
        return PreflightResult(ok=False, errors=(f"path does not exist: {repo_path}",), branch=None)
    if not (repo_path / ".git").exists():
        return PreflightResult(ok=False, errors=(f"not a git repository (no .git): {repo_path}",), branch=None)

    errors: list[str] = []

    if git_remote_url(repo_root=repo_path) is None:
        errors.append("no 'origin' remote configured")

    try:
        if git_is_dirty(repo_root=repo_path):
            errors.append("working tree has uncommitted changes")
    except GitError as e:
        errors.append(f"unable to read working tree status: {e}")

    if config.target_branch is not None:
        branch = config.target_branch
    else:
        branch = default_branch(repo_path)

    current = git_current_branch(repo_root=repo_path)
    if current is None:
        errors.append("detached HEAD or unknown branch")
    elif branch is None or current != branch:
        errors.append(f"on branch {current!r}, expected {branch!r}")

    identity = identify(repo_path)
    excluded_by = matching_exclusion(repo_path=repo_path, identity=identity, patterns=config.exclude)
    if excluded_by is not None:
        errors.append(f"excluded by pattern {excluded_by!r}")

    if errors:
        logger.debug("Preflight failed for %s: %s", repo_path, "; ".join(errors))
    return PreflightResult(ok=not errors, errors=tuple(errors), branch=branch, identity=identity)
