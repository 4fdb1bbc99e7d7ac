#!/usr/bin/env python
"""Entry point for the local mock parameter endpoint."""
from __future__ import annotations

from config_watcher.mock_source import main

if __name__ == "__main__":
    raise SystemExit(main())
