from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from heartbeat_rotator.config import RotatorConfig
from heartbeat_rotator.repo_probe import default_branch, identify, preflight


def _config(*repos: Path, **overrides: object) -> RotatorConfig:
    return RotatorConfig(repos=tuple(repos), repos_per_run=1, **overrides)  # type: ignore[arg-type]


def test_identify_prefers_origin_url(make_repo: Callable[..., Path], tmp_path: Path) -> None:
    repo_root = make_repo("repo")
    assert identify(repo_root) == (tmp_path / "repo.git").as_posix()


def test_identify_falls_back_to_resolved_path(make_repo: Callable[..., Path], tmp_path: Path) -> None:
    repo_root = make_repo("repo", with_origin=False)
    link = tmp_path / "link"
    link.symlink_to(repo_root)
    assert identify(link) == str(repo_root.resolve())


def test_default_branch_resolution_order(make_repo: Callable[..., Path], git: Callable[..., str]) -> None:
    repo_root = make_repo("repo", branch="trunk")
    assert default_branch(repo_root) == "trunk"

    git(repo_root, "branch", "master")
    assert default_branch(repo_root) == "master"

    git(repo_root, "branch", "main")
    assert default_branch(repo_root) == "main"

    git(repo_root, "remote", "set-head", "origin", "trunk")
    assert default_branch(repo_root) == "trunk"


def test_preflight_ok_for_clean_repo(make_repo: Callable[..., Path], tmp_path: Path) -> None:
    repo_root = make_repo("repo")
    result = preflight(repo_root, _config(repo_root))

    assert result.ok is True
    assert result.errors == ()
    assert result.branch == "main"
    assert result.identity == (tmp_path / "repo.git").as_posix()


def test_preflight_missing_path_short_circuits(tmp_path: Path) -> None:
    missing = tmp_path / "missing"
    result = preflight(missing, _config(missing))

    assert result.ok is False
    assert len(result.errors) == 1
    assert "does not exist" in result.errors[0]


def test_preflight_requires_git_metadata(tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    result = preflight(plain, _config(plain))

    assert result.ok is False
    assert len(result.errors) == 1
    assert "not a git repository" in result.errors[0]


def test_preflight_collects_all_failures(make_repo: Callable[..., Path], git: Callable[..., str]) -> None:
    repo_root = make_repo("archived-repo", with_origin=False)
    git(repo_root, "checkout", "-b", "feature")
    (repo_root / "dirty.txt").write_text("x\n", encoding="utf-8")

    result = preflight(repo_root, _config(repo_root, exclude=("archived",)))

    assert result.ok is False
    joined = "\n".join(result.errors)
    assert "no 'origin' remote" in joined
    assert "uncommitted changes" in joined
    assert "on branch 'feature', expected 'main'" in joined
    assert "excluded by pattern 'archived'" in joined
    assert result.branch == "main"


def test_preflight_detached_head_is_distinct_error(make_repo: Callable[..., Path], git: Callable[..., str]) -> None:
    repo_root = make_repo("repo")
    git(repo_root, "checkout", "--detach")

    result = preflight(repo_root, _config(repo_root))
    assert result.ok is False
    assert result.errors == ("detached HEAD or unknown branch",)


def test_preflight_honours_target_branch_override(make_repo: Callable[..., Path]) -> None:
    repo_root = make_repo("repo")
    result = preflight(repo_root, _config(repo_root, target_branch="release"))

    assert result.ok is False
    assert result.branch == "release"
    assert result.errors == ("on branch 'main', expected 'release'",)


def test_preflight_exclusion_matches_identity(make_repo: Callable[..., Path]) -> None:
    repo_root = make_repo("repo")
    result = preflight(repo_root, _config(repo_root, exclude=("repo.git",)))
    assert result.errors == ("excluded by pattern 'repo.git'",)
