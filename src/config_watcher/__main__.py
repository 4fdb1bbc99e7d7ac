"""Allow ``python -m config_watcher`` invocation."""
from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
