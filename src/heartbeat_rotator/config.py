from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

HeartbeatMethod = Literal["empty-commit", "heartbeat-file"]

CONFIG_VERSION = 1
DEFAULT_REPOS_PER_RUN = 1
DEFAULT_MAX_REPOS_PER_RUN = 10
DEFAULT_METHOD: HeartbeatMethod = "empty-commit"

_METHODS: tuple[str, ...] = ("empty-commit", "heartbeat-file")
_KNOWN_KEYS = {
    "version",
    "repos",
    "repos_per_run",
    "max_repos_per_run",
    "method",
    "dry_run",
    "exclude",
    "target_branch",
}


class ConfigError(ValueError):
    pass


def _toml_load(path: Path) -> dict[str, Any]:
    try:
        import tomllib  # pyright: ignore[reportMissingImports]
    except ModuleNotFoundError:  # pragma: no cover
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}") from e
    except Exception as e:  # tomllib.TOMLDecodeError is not public across tomli/tomllib
        raise ConfigError(f"Failed to parse TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected TOML document to be a table in {path}")
    return data


def _as_int(value: Any, *, field: str, default: int, errors: list[str]) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{field}: expected integer, got {type(value).__name__}")
        return default
    return value


def _as_str_list(value: Any, *, field: str, errors: list[str]) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        errors.append(f"{field}: expected list[str], got {type(value).__name__}")
        return None
    out: list[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str):
            errors.append(f"{field}[{idx}]: expected string, got {type(item).__name__}")
            continue
        if not item.strip():
            errors.append(f"{field}[{idx}]: must be non-empty")
            continue
        out.append(item)
    return out


def clamp_repos_per_run(requested: int, *, max_repos_per_run: int, repo_count: int) -> int:
    upper = max(1, min(max_repos_per_run, repo_count))
    return max(1, min(requested, upper))


@dataclass(frozen=True, slots=True)
class RotatorConfig:
    repos: tuple[Path, ...]
    repos_per_run: int
    max_repos_per_run: int = DEFAULT_MAX_REPOS_PER_RUN
    method: HeartbeatMethod = DEFAULT_METHOD
    dry_run: bool = False
    exclude: tuple[str, ...] = ()
    target_branch: str | None = None

    @property
    def repo_count(self) -> int:
        return len(self.repos)


def load_config(config_path: Path) -> RotatorConfig:
    data = _toml_load(config_path)

    errors: list[str] = []
    unknown_keys = set(data) - _KNOWN_KEYS
    if unknown_keys:
        errors.append(f"Top-level: unknown keys {sorted(unknown_keys)} (allowed: {sorted(_KNOWN_KEYS)})")

    version = data.get("version")
    if version is None:
        errors.append("version: required field missing")
    elif isinstance(version, bool) or not isinstance(version, int):
        errors.append(f"version: expected integer, got {type(version).__name__}")
    elif version != CONFIG_VERSION:
        errors.append(f"version: unsupported config version {version} (expected {CONFIG_VERSION})")

    repos_raw = data.get("repos")
    repos: list[str] = []
    if repos_raw is None:
        errors.append("repos: required field missing")
    else:
        repos = _as_str_list(repos_raw, field="repos", errors=errors) or []
        if isinstance(repos_raw, list) and not repos_raw:
            errors.append("repos: must list at least one repository path")

    max_repos_per_run = _as_int(
        data.get("max_repos_per_run"),
        field="max_repos_per_run",
        default=DEFAULT_MAX_REPOS_PER_RUN,
        errors=errors,
    )
    if max_repos_per_run < 1:
        errors.append(f"max_repos_per_run: must be >= 1, got {max_repos_per_run}")

    repos_per_run = _as_int(
        data.get("repos_per_run"),
        field="repos_per_run",
        default=DEFAULT_REPOS_PER_RUN,
        errors=errors,
    )

    method = data.get("method", DEFAULT_METHOD)
    if method not in _METHODS:
        errors.append(f"method: expected one of {list(_METHODS)}, got {method!r}")

    dry_run = data.get("dry_run", False)
    if not isinstance(dry_run, bool):
        errors.append(f"dry_run: expected boolean, got {type(dry_run).__name__}")

    exclude_raw = data.get("exclude")
    if exclude_raw is not None and not isinstance(exclude_raw, list):
        errors.append(f"exclude: expected array of strings, got {type(exclude_raw).__name__}")
        exclude: list[str] = []
    else:
        exclude = _as_str_list(exclude_raw, field="exclude", errors=errors) or []

    target_branch = data.get("target_branch")
    if target_branch is not None and (not isinstance(target_branch, str) or not target_branch.strip()):
        errors.append("target_branch: expected non-empty string")

    if errors:
        raise ConfigError("Invalid config:\n- " + "\n- ".join(errors))

    repo_paths = tuple(Path(r).expanduser() for r in repos)
    return RotatorConfig(
        repos=repo_paths,
        repos_per_run=clamp_repos_per_run(
            repos_per_run,
            max_repos_per_run=max_repos_per_run,
            repo_count=len(repo_paths),
        ),
        max_repos_per_run=max_repos_per_run,
        method=method,
        dry_run=dry_run,
        exclude=tuple(exclude),
        target_branch=target_branch,
    )
