from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

STATE_VERSION = 1


class RunStateError(ValueError):
    pass


class HeartbeatAction(str, Enum):
    PULSE = "pulse"
    BEAT = "beat"

    def successor(self) -> HeartbeatAction:
        return HeartbeatAction.BEAT if self is HeartbeatAction.PULSE else HeartbeatAction.PULSE


DEFAULT_ACTION = HeartbeatAction.PULSE


def next_action(last_action: HeartbeatAction | None) -> HeartbeatAction:
    if last_action is None:
        return DEFAULT_ACTION
    return last_action.successor()


def _as_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RunStateError(f"{field}: expected int, got {type(value).__name__}")
    return value


def _as_optional_str(value: Any, *, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise RunStateError(f"{field}: expected string, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class CycleState:
    order: tuple[int, ...]
    position: int = 0

    def is_consistent(self, repo_count: int) -> bool:
        if len(self.order) != repo_count:
            return False
        if sorted(self.order) != list(range(repo_count)):
            return False
        return 0 <= self.position <= len(self.order)

    def to_json_dict(self) -> dict[str, Any]:
        return {"order": list(self.order), "position": self.position}

    @classmethod
    def from_json_dict(cls, data: Any) -> CycleState:
        if not isinstance(data, dict):
            raise RunStateError(f"cycle: expected object, got {type(data).__name__}")
        order_raw = data.get("order")
        if not isinstance(order_raw, list):
            raise RunStateError(f"cycle.order: expected list, got {type(order_raw).__name__}")
        order = tuple(_as_int(v, field=f"cycle.order[{idx}]") for idx, v in enumerate(order_raw))
        position = _as_int(data.get("position"), field="cycle.position")
        return cls(order=order, position=position)


@dataclass(frozen=True, slots=True)
class RepoHistory:
    last_action: HeartbeatAction | None = None
    last_success: datetime | None = None
    failures: int = 0
    last_error: str | None = None

    def record_success(self, *, action: HeartbeatAction, now: datetime) -> RepoHistory:
        return RepoHistory(last_action=action, last_success=now, failures=0, last_error=None)

    def record_failure(self, *, error: str) -> RepoHistory:
        return replace(self, failures=self.failures + 1, last_error=error)

    def to_json_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "last_action": self.last_action.value if self.last_action is not None else None,
            "last_success": self.last_success.isoformat() if self.last_success is not None else None,
            "failures": self.failures,
        }
        if self.failures > 0 and self.last_error is not None:
            payload["last_error"] = self.last_error
        return payload

    @classmethod
    def from_json_dict(cls, data: Any, *, identity: str) -> RepoHistory:
        prefix = f"repos[{identity!r}]"
        if not isinstance(data, dict):
            raise RunStateError(f"{prefix}: expected object, got {type(data).__name__}")

        action_raw = _as_optional_str(data.get("last_action"), field=f"{prefix}.last_action")
        last_action: HeartbeatAction | None = None
        if action_raw is not None:
            try:
                last_action = HeartbeatAction(action_raw)
            except ValueError as e:
                raise RunStateError(f"{prefix}.last_action: unknown action {action_raw!r}") from e

        success_raw = _as_optional_str(data.get("last_success"), field=f"{prefix}.last_success")
        last_success: datetime | None = None
        if success_raw is not None:
            try:
                last_success = datetime.fromisoformat(success_raw)
            except ValueError as e:
                raise RunStateError(f"{prefix}.last_success: invalid ISO datetime: {success_raw!r}") from e

        failures = _as_int(data.get("failures", 0), field=f"{prefix}.failures")
        last_error = _as_optional_str(data.get("last_error"), field=f"{prefix}.last_error")
        if failures == 0:
            last_error = None
        return cls(
            last_action=last_action,
            last_success=last_success,
            failures=failures,
            last_error=last_error,
        )


@dataclass(frozen=True, slots=True)
class RotatorState:
    cycle: CycleState
    repos: dict[str, RepoHistory] = field(default_factory=dict)
    version: int = STATE_VERSION

    def history_for(self, identity: str) -> RepoHistory:
        return self.repos.get(identity, RepoHistory())

    def with_history(self, identity: str, history: RepoHistory) -> RotatorState:
        repos = dict(self.repos)
        repos[identity] = history
        return replace(self, repos=repos)

    def with_cycle(self, cycle: CycleState) -> RotatorState:
        return replace(self, cycle=cycle)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "cycle": self.cycle.to_json_dict(),
            "repos": {identity: h.to_json_dict() for identity, h in sorted(self.repos.items())},
        }

    @classmethod
    def from_json_dict(cls, data: Any) -> RotatorState:
        if not isinstance(data, dict):
            raise RunStateError(f"Expected object for state document, got {type(data).__name__}")

        version = _as_int(data.get("version"), field="version")
        cycle = CycleState.from_json_dict(data.get("cycle"))

        repos_raw = data.get("repos", {})
        if not isinstance(repos_raw, dict):
            raise RunStateError(f"repos: expected object, got {type(repos_raw).__name__}")
        repos = {
            identity: RepoHistory.from_json_dict(entry, identity=identity)
            for identity, entry in repos_raw.items()
        }
        return cls(cycle=cycle, repos=repos, version=version)
