from __future__ import annotations

import json
import os
import subprocess
import sys
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

import heartbeat_rotator.cli as rotator_cli
from heartbeat_rotator.run_lock import format_lock_payload


def _write_config(path: Path, repos: list[Path], *extra: str) -> Path:
    repo_list = ", ".join(f'"{r.as_posix()}"' for r in repos)
    path.write_text("\n".join(["version = 1", f"repos = [{repo_list}]", *extra, ""]), encoding="utf-8")
    return path


def test_cli_help_runs() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    env = os.environ.copy()
    env["PYTHONPATH"] = str(repo_root / "src") + os.pathsep + env.get("PYTHONPATH", "")
    result = subprocess.run(
        [sys.executable, "-m", "heartbeat_rotator", "--help"],
        capture_output=True,
        text=True,
        check=False,
        env=env,
    )
    assert result.returncode == 0
    assert "run" in result.stdout


def test_cli_run_dry_run_reports_without_state(
    make_repo: Callable[..., Path], tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    repo_root = make_repo("repo")
    cfg = _write_config(tmp_path / "heartbeat.toml", [repo_root])
    cache_dir = tmp_path / "cache"

    code = rotator_cli.main(
        ["run", "--config", cfg.as_posix(), "--cache-dir", cache_dir.as_posix(), "--dry-run"]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "status=dry_run action=pulse branch=main" in out
    assert "dry_run=true" in out
    assert not (cache_dir / "state.json").exists()


def test_cli_run_then_status(
    make_repo: Callable[..., Path], tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    repo_root = make_repo("repo")
    cfg = _write_config(tmp_path / "heartbeat.toml", [repo_root])
    cache_dir = tmp_path / "cache"

    assert rotator_cli.main(["run", "--config", cfg.as_posix(), "--cache-dir", cache_dir.as_posix()]) == 0
    out = capsys.readouterr().out
    assert "status=ok action=pulse" in out
    assert "position=0/1 reshuffled=true dry_run=false" in out

    assert rotator_cli.main(["status", "--cache-dir", cache_dir.as_posix()]) == 0
    out = capsys.readouterr().out
    assert "version=1 position=0/1" in out
    assert f"{(tmp_path / 'repo.git').as_posix()} last_action=pulse" in out

    assert rotator_cli.main(["status", "--cache-dir", cache_dir.as_posix(), "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["version"] == 1


def test_cli_status_without_state(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert rotator_cli.main(["status", "--cache-dir", tmp_path.as_posix()]) == 0
    assert "no state found" in capsys.readouterr().out


def test_cli_run_exits_nonzero_on_lock_contention(tmp_path: Path) -> None:
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    (cache_dir / "run.lock").write_text(
        format_lock_payload(pid=os.getpid(), now=datetime.now(timezone.utc)) + "\n",
        encoding="utf-8",
    )

    with pytest.raises(SystemExit) as excinfo:
        rotator_cli.main(["run", "--config", (tmp_path / "x.toml").as_posix(), "--cache-dir", cache_dir.as_posix()])
    assert "already running" in str(excinfo.value)


def test_cli_run_exits_nonzero_on_bad_config(tmp_path: Path) -> None:
    cfg = tmp_path / "heartbeat.toml"
    cfg.write_text('version = 1\nrepos = ["/tmp/a"]\nmethod = "rebase"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        rotator_cli.main(["run", "--config", cfg.as_posix(), "--cache-dir", (tmp_path / "cache").as_posix()])
    assert "heartbeat-rotator: Invalid config" in str(excinfo.value)
    assert excinfo.value.code != 0


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"version": 1, "cycle": {"order": "0,1", "position": 0}, "repos": {}}, "cycle.order"),
        ({"version": 1, "cycle": {"order": [0], "position": 0}, "repos": {"x": {"failures": "many"}}}, "failures"),
        ({"version": 99, "cycle": {"order": [0], "position": 0}, "repos": {}}, "Unsupported state version 99"),
    ],
)
def test_cli_status_rejects_invalid_state(tmp_path: Path, document: dict[str, object], message: str) -> None:
    (tmp_path / "state.json").write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        rotator_cli.main(["status", "--cache-dir", tmp_path.as_posix()])
    assert str(excinfo.value).startswith("heartbeat-rotator: ")
    assert message in str(excinfo.value)


def test_cli_status_rejects_unparseable_state(tmp_path: Path) -> None:
    (tmp_path / "state.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        rotator_cli.main(["status", "--cache-dir", tmp_path.as_posix()])
    assert "Failed to parse" in str(excinfo.value)
