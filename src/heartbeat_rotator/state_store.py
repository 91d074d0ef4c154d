from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from heartbeat_rotator.audit_trail import write_json_atomic
from heartbeat_rotator.cycle_scheduler import fresh_cycle
from heartbeat_rotator.run_state import STATE_VERSION, RotatorState, RunStateError

ResetReason = Literal["missing", "version", "cycle_drift"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LoadedState:
    state: RotatorState
    reset: ResetReason | None


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def new_state(repo_count: int, *, rng: random.Random) -> RotatorState:
    return RotatorState(cycle=fresh_cycle(repo_count, rng=rng), repos={}, version=STATE_VERSION)


def _read_document(path: Path) -> Any:
    try:
        return _read_json(path)
    except json.JSONDecodeError as e:
        raise RunStateError(f"Failed to parse {path}: {e}") from e
    except FileNotFoundError:
        raise
    except OSError as e:
        raise RunStateError(f"Failed to read {path}: {e}") from e


def read_state(path: Path) -> RotatorState | None:
    """Strictly parse the state document for reporting; None when there is none yet."""
    try:
        data = _read_document(path)
    except FileNotFoundError:
        return None
    version = data.get("version") if isinstance(data, dict) else None
    if version != STATE_VERSION:
        raise RunStateError(
            f"Unsupported state version {version!r} in {path} (expected {STATE_VERSION}); "
            "the next run will start a fresh cycle"
        )
    return RotatorState.from_json_dict(data)


def load_state(path: Path, *, repo_count: int, rng: random.Random) -> LoadedState:
    try:
        data = _read_document(path)
    except FileNotFoundError:
        logger.info("No state at %s; starting a fresh cycle of %d repos", path, repo_count)
        return LoadedState(state=new_state(repo_count, rng=rng), reset="missing")

    # Checked before full parsing: other versions may use a different layout.
    version = data.get("version") if isinstance(data, dict) else None
    if version != STATE_VERSION:
        logger.info(
            "State version %r at %s is unsupported (expected %d); discarding state",
            version,
            path,
            STATE_VERSION,
        )
        return LoadedState(state=new_state(repo_count, rng=rng), reset="version")

    state = RotatorState.from_json_dict(data)
    if not state.cycle.is_consistent(repo_count):
        logger.info(
            "Cycle (length=%d position=%d) does not match %d configured repos; reshuffling",
            len(state.cycle.order),
            state.cycle.position,
            repo_count,
        )
        return LoadedState(state=state.with_cycle(fresh_cycle(repo_count, rng=rng)), reset="cycle_drift")

    return LoadedState(state=state, reset=None)


def save_state(path: Path, state: RotatorState) -> None:
    write_json_atomic(path, state.to_json_dict())
