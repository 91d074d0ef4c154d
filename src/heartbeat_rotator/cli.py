from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from heartbeat_rotator import __version__
from heartbeat_rotator.paths import RotatorPaths, default_cache_dir
from heartbeat_rotator.rotation_cycle import RepoOutcome, RotationCycleError, run_rotation_cycle
from heartbeat_rotator.run_state import RunStateError
from heartbeat_rotator.state_store import read_state

DEFAULT_CONFIG_PATH = Path("config/heartbeat.toml")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_paths(args: argparse.Namespace) -> RotatorPaths:
    cache_dir = Path(args.cache_dir).expanduser() if args.cache_dir else default_cache_dir()
    return RotatorPaths(cache_dir=cache_dir)


def _format_bool(v: bool) -> str:
    return "true" if v else "false"


def _format_outcome(outcome: RepoOutcome) -> str:
    parts = [f"repo={outcome.path.as_posix()}", f"status={outcome.status}"]
    if outcome.action is not None:
        parts.append(f"action={outcome.action.value}")
    if outcome.branch is not None:
        parts.append(f"branch={outcome.branch}")
    if outcome.commit is not None:
        parts.append(f"commit={outcome.commit[:12]}")
    if outcome.reasons:
        parts.append(f"detail={'; '.join(outcome.reasons)!r}")
    return " ".join(parts)


def _cmd_run(args: argparse.Namespace) -> int:
    _configure_logging(bool(args.verbose))
    paths = _resolve_paths(args)
    config_path = Path(args.config).expanduser() if args.config else DEFAULT_CONFIG_PATH

    try:
        result = run_rotation_cycle(
            config_path=config_path,
            paths=paths,
            force_dry_run=bool(args.dry_run),
        )
    except RotationCycleError as e:
        raise SystemExit(f"heartbeat-rotator: {e}") from e

    for outcome in result.outcomes:
        print(_format_outcome(outcome))
    print(
        f"status=ok selected={len(result.outcomes)} "
        f"position={result.cycle.position}/{len(result.cycle.order)} "
        f"reshuffled={_format_bool(result.reshuffled)} dry_run={_format_bool(result.dry_run)}"
    )
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    paths = _resolve_paths(args)
    try:
        state = read_state(paths.state_path)
    except RunStateError as e:
        raise SystemExit(f"heartbeat-rotator: {e}") from e
    if state is None:
        print(f"(no state found at {paths.state_path})")
        return 0

    if args.json:
        print(json.dumps(state.to_json_dict(), indent=2, sort_keys=True))
        return 0

    print(f"version={state.version} position={state.cycle.position}/{len(state.cycle.order)}")
    if not state.repos:
        print("(no repo history recorded)")
        return 0
    for identity in sorted(state.repos):
        history = state.repos[identity]
        parts = [
            identity,
            f"last_action={history.last_action.value if history.last_action is not None else '-'}",
            f"last_success={history.last_success.isoformat() if history.last_success is not None else '-'}",
            f"failures={history.failures}",
        ]
        if history.last_error:
            parts.append(f"last_error={history.last_error!r}")
        print(" ".join(parts))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="heartbeat-rotator",
        description="Rotate heartbeat commits across a configured set of git repositories.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Heartbeat the next batch of repos in the cycle.")
    run_parser.add_argument(
        "--config",
        default=None,
        help=f"Path to the TOML config (defaults to {DEFAULT_CONFIG_PATH.as_posix()}).",
    )
    run_parser.add_argument("--cache-dir", default=None, help="Override state/lock directory.")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would happen without committing, pushing, or writing state.",
    )
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    run_parser.set_defaults(func=_cmd_run)

    status_parser = subparsers.add_parser("status", help="Show the persisted cycle and per-repo history.")
    status_parser.add_argument("--cache-dir", default=None, help="Override state/lock directory.")
    status_parser.add_argument("--json", action="store_true", help="Print the raw state document.")
    status_parser.set_defaults(func=_cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    return int(args.func(args))
