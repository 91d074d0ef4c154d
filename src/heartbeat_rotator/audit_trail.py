from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f".{path.name}.",
        suffix=".tmp",
    ) as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.write("\n")
        tmp_name = f.name
    os.replace(tmp_name, path)


def append_jsonl(path: Path, event: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(dict(event), sort_keys=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(payload + "\n")


def heartbeat_event(
    *,
    at: datetime,
    identity: str | None,
    path: Path,
    status: str,
    action: str | None,
    method: str,
    branch: str | None,
    error: str | None,
) -> dict[str, Any]:
    return {
        "at": at.isoformat(),
        "identity": identity,
        "path": path.as_posix(),
        "status": status,
        "action": action,
        "method": method,
        "branch": branch,
        "error": error,
    }
