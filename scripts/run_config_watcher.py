#!/usr/bin/env python
"""Entry point for the bidder config watcher."""
from __future__ import annotations

from config_watcher.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
