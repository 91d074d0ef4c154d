from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator


class RunLockError(RuntimeError):
    pass


logger = logging.getLogger(__name__)

_PID_RE = re.compile(r"pid:(\d+)")

_IN_PROCESS_GUARD = threading.Lock()
_IN_PROCESS_HELD: set[str] = set()


def format_lock_payload(*, pid: int, now: datetime) -> str:
    return f"pid:{pid} time:{now.isoformat()}"


def parse_lock_pid(payload: str) -> int | None:
    match = _PID_RE.search(payload)
    if match is None:
        return None
    return int(match.group(1))


def pid_is_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user.
        return True
    return True


@dataclass(slots=True)
class RunLock:
    """PID-stamped marker file whose existence means a run is in progress.

    Inspecting, clearing and creating the marker all happen while holding an
    exclusive ``flock`` on a sibling ``.guard`` file, so a stale-lock cleanup in
    one process can never remove a marker another process just created. The
    marker is linked into place already written, so it is never seen empty.
    """

    lock_path: Path
    _held: bool = False
    _guard_key: str | None = None
    _payload: str | None = None

    @property
    def held(self) -> bool:
        return self._held

    @property
    def guard_path(self) -> Path:
        return self.lock_path.with_name(f"{self.lock_path.name}.guard")

    def acquire(self) -> None:
        if self._held:
            raise RunLockError("RunLock already acquired in this process.")

        guard_key = str(self.lock_path.resolve())
        with _IN_PROCESS_GUARD:
            if guard_key in _IN_PROCESS_HELD:
                raise RunLockError(f"Lock already held in this process: {self.lock_path}")
            _IN_PROCESS_HELD.add(guard_key)
        self._guard_key = guard_key

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with self._guarded():
                self._clear_stale_lock()
                self._payload = self._create_marker()
        except Exception:
            with _IN_PROCESS_GUARD:
                _IN_PROCESS_HELD.discard(guard_key)
            self._guard_key = None
            raise
        self._held = True

    @contextmanager
    def _guarded(self) -> Iterator[None]:
        try:
            import fcntl  # pyright: ignore[reportMissingImports]
        except ModuleNotFoundError:  # pragma: no cover
            yield
            return

        with self.guard_path.open("a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read_marker(self) -> str | None:
        try:
            return self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _clear_stale_lock(self) -> None:
        payload = self._read_marker()
        if payload is None:
            return

        pid = parse_lock_pid(payload)
        if pid is not None and pid_is_running(pid):
            raise RunLockError(
                f"Another heartbeat-rotator instance is already running "
                f"(pid={pid}, lock: {self.lock_path})"
            )

        logger.warning(
            "Removing stale lock %s (recorded pid=%s is not running)",
            self.lock_path,
            pid if pid is not None else "<unparseable>",
        )
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def _create_marker(self) -> str:
        payload = format_lock_payload(pid=os.getpid(), now=datetime.now(timezone.utc))
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.lock_path.name}.", dir=self.lock_path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.write("\n")
            try:
                os.link(tmp_path, self.lock_path)
            except FileExistsError as e:
                raise RunLockError(
                    f"Another heartbeat-rotator instance is already running (lock: {self.lock_path})"
                ) from e
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
        return payload

    def release(self) -> None:
        if not self._held:
            return

        try:
            with self._guarded():
                current = self._read_marker()
                if current is not None and current.strip() == self._payload:
                    try:
                        self.lock_path.unlink()
                    except FileNotFoundError:
                        pass
                elif current is not None:
                    logger.warning("Lock %s no longer holds this process's marker; leaving it", self.lock_path)
        finally:
            self._held = False
            self._payload = None
            if self._guard_key is not None:
                with _IN_PROCESS_GUARD:
                    _IN_PROCESS_HELD.discard(self._guard_key)
                self._guard_key = None

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
