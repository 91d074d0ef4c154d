from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def default_cache_dir() -> Path:
    override = os.environ.get("HEARTBEAT_ROTATOR_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        return Path(xdg_cache_home).expanduser() / "heartbeat-rotator"

    return Path.home() / ".cache" / "heartbeat-rotator"


@dataclass(frozen=True, slots=True)
class RotatorPaths:
    cache_dir: Path

    @property
    def state_path(self) -> Path:
        return self.cache_dir / "state.json"

    @property
    def run_lock_path(self) -> Path:
        return self.cache_dir / "run.lock"

    @property
    def events_path(self) -> Path:
        return self.cache_dir / "events.jsonl"
