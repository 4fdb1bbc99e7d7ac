"""Error taxonomy for the config watcher.

Every steady-state failure is a ``SyncError`` subclass so the orchestrator can
tell which stage of a cycle failed and defer to the next tick.
"""
from __future__ import annotations

from typing import Dict, Optional, Tuple


class SyncError(RuntimeError):
    pass


class FetchError(SyncError):
    """Transport failure or non-2xx status from the parameter endpoint."""


class DecodeError(SyncError):
    """Endpoint payload is not a JSON object of the expected shape."""


class FileIOError(SyncError):
    """Reading or writing the target env file failed."""


class ConfirmMismatchError(SyncError):
    """The re-read env file does not hold the values that were just written."""

    def __init__(self, path, mismatches: Dict[str, Tuple[str, Optional[str]]]):
        self.path = path
        self.mismatches = dict(mismatches)
        details = ", ".join(
            f"{key} (expected {expected!r}, got {'<missing>' if actual is None else repr(actual)})"
            for key, (expected, actual) in sorted(self.mismatches.items())
        )
        super().__init__(f"confirm failed for {path}: {details}")


class ReloadError(SyncError):
    """One of the service reload actions failed."""

    def __init__(self, action: str, command: str, output: str):
        self.action = action
        self.command = command
        self.output = output
        super().__init__(f"{action} failed ({command}): {output.strip() or '<no output>'}")
