from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from heartbeat_rotator.audit_trail import append_jsonl, heartbeat_event
from heartbeat_rotator.config import ConfigError, RotatorConfig, load_config
from heartbeat_rotator.cycle_scheduler import SelectedRepo, advance_cycle, fresh_cycle, select_batch
from heartbeat_rotator.git_subprocess import GitError
from heartbeat_rotator.heartbeat import run_heartbeat
from heartbeat_rotator.paths import RotatorPaths
from heartbeat_rotator.repo_probe import preflight
from heartbeat_rotator.run_lock import RunLock, RunLockError
from heartbeat_rotator.run_state import CycleState, HeartbeatAction, RotatorState, RunStateError, next_action
from heartbeat_rotator.state_store import ResetReason, load_state, save_state

RepoStatus = Literal["ok", "failed", "skipped", "dry_run"]

logger = logging.getLogger(__name__)


class RotationCycleError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class RepoOutcome:
    index: int
    path: Path
    status: RepoStatus
    identity: str | None = None
    action: HeartbeatAction | None = None
    branch: str | None = None
    commit: str | None = None
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RotationCycleResult:
    config: RotatorConfig
    outcomes: tuple[RepoOutcome, ...]
    cycle: CycleState
    reshuffled: bool
    state_reset: ResetReason | None

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run


def _process_repo(
    selected: SelectedRepo,
    *,
    config: RotatorConfig,
    state: RotatorState,
    now: datetime,
) -> tuple[RepoOutcome, RotatorState]:
    try:
        check = preflight(selected.path, config)
    except GitError as e:
        return RepoOutcome(index=selected.index, path=selected.path, status="skipped", reasons=(str(e),)), state

    if not check.ok or check.branch is None or check.identity is None:
        logger.warning("Skipping %s: %s", selected.path, "; ".join(check.errors))
        outcome = RepoOutcome(
            index=selected.index,
            path=selected.path,
            status="skipped",
            identity=check.identity,
            branch=check.branch,
            reasons=check.errors,
        )
        return outcome, state

    history = state.history_for(check.identity)
    action = next_action(history.last_action)
    result = run_heartbeat(
        selected.path,
        branch=check.branch,
        action=action,
        method=config.method,
        dry_run=config.dry_run,
    )

    outcome = RepoOutcome(
        index=selected.index,
        path=selected.path,
        status="ok",
        identity=check.identity,
        action=action,
        branch=check.branch,
        commit=result.commit,
        reasons=(result.detail,) if result.detail else (),
    )
    if config.dry_run:
        return replace(outcome, status="dry_run"), state

    if result.ok:
        return outcome, state.with_history(check.identity, history.record_success(action=action, now=now))

    error = result.error or "heartbeat failed"
    failed = replace(outcome, status="failed", reasons=(error,))
    return failed, state.with_history(check.identity, history.record_failure(error=error))


def _record_events(paths: RotatorPaths, *, config: RotatorConfig, outcomes: tuple[RepoOutcome, ...], now: datetime) -> None:
    for outcome in outcomes:
        append_jsonl(
            paths.events_path,
            heartbeat_event(
                at=now,
                identity=outcome.identity,
                path=outcome.path,
                status=outcome.status,
                action=outcome.action.value if outcome.action is not None else None,
                method=config.method,
                branch=outcome.branch,
                error="; ".join(outcome.reasons) if outcome.status in ("failed", "skipped") else None,
            ),
        )


def run_rotation_cycle(
    *,
    config_path: Path,
    paths: RotatorPaths,
    force_dry_run: bool = False,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> RotationCycleResult:
    if rng is None:
        rng = random.Random()
    if now is None:
        now = datetime.now(timezone.utc)
    if now.tzinfo is None:
        raise RotationCycleError("run_rotation_cycle requires a timezone-aware now datetime.")

    try:
        with RunLock(paths.run_lock_path):
            config = load_config(config_path)
            if force_dry_run and not config.dry_run:
                config = replace(config, dry_run=True)

            loaded = load_state(paths.state_path, repo_count=config.repo_count, rng=rng)
            state = loaded.state
            reshuffled = False

            batch = select_batch(config, state.cycle)
            if not batch and not config.dry_run:
                logger.info("Cycle exhausted or malformed; reshuffling before selection")
                state = state.with_cycle(fresh_cycle(config.repo_count, rng=rng))
                reshuffled = True
                batch = select_batch(config, state.cycle)

            logger.info(
                "Selected %d repo(s) at position %d/%d%s",
                len(batch),
                state.cycle.position,
                len(state.cycle.order),
                " (dry run)" if config.dry_run else "",
            )

            outcomes: list[RepoOutcome] = []
            for selected in batch:
                outcome, state = _process_repo(selected, config=config, state=state, now=now)
                outcomes.append(outcome)

            if config.dry_run:
                return RotationCycleResult(
                    config=config,
                    outcomes=tuple(outcomes),
                    cycle=state.cycle,
                    reshuffled=reshuffled,
                    state_reset=loaded.reset,
                )

            if state.cycle.position + len(batch) >= len(state.cycle.order):
                reshuffled = True
            state = state.with_cycle(advance_cycle(config, state.cycle, len(batch), rng=rng))
            save_state(paths.state_path, state)
            _record_events(paths, config=config, outcomes=tuple(outcomes), now=now)

            return RotationCycleResult(
                config=config,
                outcomes=tuple(outcomes),
                cycle=state.cycle,
                reshuffled=reshuffled,
                state_reset=loaded.reset,
            )
    except RunLockError as e:
        raise RotationCycleError(str(e)) from e
    except ConfigError as e:
        raise RotationCycleError(str(e)) from e
    except RunStateError as e:
        raise RotationCycleError(str(e)) from e
