from __future__ import annotations

from heartbeat_rotator.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
