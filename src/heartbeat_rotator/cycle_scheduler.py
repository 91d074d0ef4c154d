from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path

from heartbeat_rotator.config import RotatorConfig
from heartbeat_rotator.run_state import CycleState


@dataclass(frozen=True, slots=True)
class SelectedRepo:
    index: int
    path: Path


def shuffled_order(count: int, *, rng: random.Random) -> tuple[int, ...]:
    """Uniform random permutation of ``range(count)`` (Fisher-Yates via ``rng.shuffle``)."""
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")
    order = list(range(count))
    rng.shuffle(order)
    return tuple(order)


def fresh_cycle(count: int, *, rng: random.Random) -> CycleState:
    return CycleState(order=shuffled_order(count, rng=rng), position=0)


def select_batch(config: RotatorConfig, cycle: CycleState) -> list[SelectedRepo]:
    """Return the next window of repos, or an empty list for an exhausted/malformed cycle.

    Near the end of a cycle the window is shorter than ``repos_per_run``.
    """
    if not cycle.order or not cycle.is_consistent(config.repo_count):
        return []
    if cycle.position >= len(cycle.order):
        return []

    end = min(cycle.position + config.repos_per_run, len(cycle.order))
    return [SelectedRepo(index=idx, path=config.repos[idx]) for idx in cycle.order[cycle.position : end]]


def advance_cycle(
    config: RotatorConfig,
    cycle: CycleState,
    count: int,
    *,
    rng: random.Random,
) -> CycleState:
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    position = cycle.position + count
    if position >= len(cycle.order):
        return fresh_cycle(config.repo_count, rng=rng)
    return CycleState(order=cycle.order, position=position)
