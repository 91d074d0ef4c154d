from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from heartbeat_rotator.config import HeartbeatMethod
from heartbeat_rotator.git_subprocess import (
    GitError,
    git_checkout_paths,
    git_commit,
    git_has_staged_changes,
    git_path_in_head,
    git_push,
    git_stage_paths,
    git_unstage_paths,
)
from heartbeat_rotator.run_state import HeartbeatAction

logger = logging.getLogger(__name__)

HEARTBEAT_DIR = ".heartbeat"
HEARTBEAT_FILE = f"{HEARTBEAT_DIR}/heartbeat.txt"

_FILE_CONTENTS: dict[HeartbeatAction, str] = {
    HeartbeatAction.PULSE: "pulse\n",
    HeartbeatAction.BEAT: "beat\n",
}


@dataclass(frozen=True, slots=True)
class HeartbeatResult:
    ok: bool
    action: HeartbeatAction
    method: HeartbeatMethod
    branch: str
    dry_run: bool
    commit: str | None = None
    error: str | None = None
    detail: str = ""


def commit_message(action: HeartbeatAction, *, method: HeartbeatMethod) -> str:
    if method == "heartbeat-file":
        return f"chore: heartbeat {action.value} (file)"
    return f"chore: heartbeat {action.value}"


def _describe(action: HeartbeatAction, *, method: HeartbeatMethod, branch: str) -> str:
    if method == "heartbeat-file":
        return f"write {HEARTBEAT_FILE} ({action.value}), commit and push to origin/{branch}"
    return f"empty commit ({action.value}) and push to origin/{branch}"


def _commit_empty(repo_path: Path, *, action: HeartbeatAction) -> str:
    return git_commit(
        repo_root=repo_path,
        message=commit_message(action, method="empty-commit"),
        allow_empty=True,
    )


def _restore_heartbeat_file(repo_path: Path, *, tracked: bool, dir_existed: bool) -> None:
    """Put the heartbeat file back the way HEAD has it so the tree is clean again."""
    marker_dir = repo_path / HEARTBEAT_DIR
    try:
        git_unstage_paths(repo_root=repo_path, paths=[HEARTBEAT_FILE])
        if tracked:
            git_checkout_paths(repo_root=repo_path, paths=[HEARTBEAT_FILE])
            return
        (repo_path / HEARTBEAT_FILE).unlink(missing_ok=True)
        if not dir_existed and marker_dir.is_dir() and not any(marker_dir.iterdir()):
            marker_dir.rmdir()
    except (GitError, OSError) as e:
        logger.error("Could not restore %s in %s: %s", HEARTBEAT_FILE, repo_path, e)


def _commit_heartbeat_file(repo_path: Path, *, action: HeartbeatAction) -> str:
    marker_dir = repo_path / HEARTBEAT_DIR
    tracked = git_path_in_head(repo_root=repo_path, path=HEARTBEAT_FILE)
    dir_existed = marker_dir.is_dir()

    try:
        marker_dir.mkdir(parents=True, exist_ok=True)
        (repo_path / HEARTBEAT_FILE).write_text(_FILE_CONTENTS[action], encoding="utf-8")
        git_stage_paths(repo_root=repo_path, paths=[HEARTBEAT_FILE])

        # Same content as HEAD (history lost or reset): keep the toggle with an empty commit.
        allow_empty = not git_has_staged_changes(repo_root=repo_path)
        return git_commit(
            repo_root=repo_path,
            message=commit_message(action, method="heartbeat-file"),
            allow_empty=allow_empty,
        )
    except (GitError, OSError):
        _restore_heartbeat_file(repo_path, tracked=tracked, dir_existed=dir_existed)
        raise


def run_heartbeat(
    repo_path: Path,
    *,
    branch: str,
    action: HeartbeatAction,
    method: HeartbeatMethod,
    dry_run: bool,
) -> HeartbeatResult:
    detail = _describe(action, method=method, branch=branch)
    if dry_run:
        logger.info("[dry-run] %s: would %s", repo_path, detail)
        return HeartbeatResult(
            ok=True,
            action=action,
            method=method,
            branch=branch,
            dry_run=True,
            detail=f"would {detail}",
        )

    try:
        if method == "heartbeat-file":
            commit = _commit_heartbeat_file(repo_path, action=action)
        else:
            commit = _commit_empty(repo_path, action=action)
        git_push(repo_root=repo_path, branch=branch)
    except (GitError, OSError) as e:
        logger.warning("Heartbeat failed for %s: %s", repo_path, e)
        return HeartbeatResult(
            ok=False,
            action=action,
            method=method,
            branch=branch,
            dry_run=False,
            error=str(e),
            detail=detail,
        )

    logger.info("Heartbeat %s pushed for %s (%s)", action.value, repo_path, commit[:12])
    return HeartbeatResult(
        ok=True,
        action=action,
        method=method,
        branch=branch,
        dry_run=False,
        commit=commit,
        detail=detail,
    )
