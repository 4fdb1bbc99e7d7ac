"""
Sync Orchestrator

One cycle walks FETCH -> DIFF -> APPLY -> CONFIRM -> ADVANCE_BASELINE -> RELOAD
and stops at the first failing stage. The baseline only advances after the
file has been written and confirmed, so a failed apply or confirm is retried
from scratch on the next tick. A failed reload does not revert the baseline:
the file is correct, the operator is alerted through the log.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .change_detector import Baseline, diff
from .config_store import ConfigStore
from .errors import ConfirmMismatchError, DecodeError, FetchError, FileIOError, ReloadError
from .parameters import DEFAULT_PARAMETERS, ParameterSpec
from .remote_source import RemoteParameterClient
from .service_reloader import ServiceReloader

logger = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    FETCH_FAILED = "fetch_failed"
    NO_CHANGES = "no_changes"
    APPLY_FAILED = "apply_failed"
    CONFIRM_FAILED = "confirm_failed"
    RELOAD_FAILED = "reload_failed"
    APPLIED = "applied"
    ERROR = "error"


@dataclass(frozen=True)
class CycleReport:
    outcome: CycleOutcome
    updates: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def baseline_advanced(self) -> bool:
        return self.outcome in (CycleOutcome.APPLIED, CycleOutcome.RELOAD_FAILED)


class SyncOrchestrator:
    def __init__(
        self,
        *,
        source: RemoteParameterClient,
        store: ConfigStore,
        reloader: ServiceReloader,
        specs: Tuple[ParameterSpec, ...] = DEFAULT_PARAMETERS,
        baseline: Optional[Baseline] = None,
    ):
        self._source = source
        self._store = store
        self._reloader = reloader
        self._specs = specs
        self.baseline = baseline if baseline is not None else Baseline()

    def run_cycle(self) -> CycleReport:
        try:
            snapshot = self._source.fetch_snapshot()
        except (FetchError, DecodeError) as exc:
            logger.error("poll error: %s", exc)
            return CycleReport(CycleOutcome.FETCH_FAILED, error=str(exc))

        updates = diff(snapshot, self.baseline, self._specs)
        if not updates:
            logger.info("No changes detected from endpoint")
            return CycleReport(CycleOutcome.NO_CHANGES)
        logger.info("Detected changes from endpoint: %s", updates)

        try:
            self._store.apply(updates)
        except FileIOError as exc:
            logger.error("failed to update env file: %s", exc)
            return CycleReport(CycleOutcome.APPLY_FAILED, updates, str(exc))

        try:
            self._store.confirm(updates)
        except ConfirmMismatchError as exc:
            logger.critical("env file does not match what was written, possible external edit: %s", exc)
            return CycleReport(CycleOutcome.CONFIRM_FAILED, updates, str(exc))
        except FileIOError as exc:
            logger.error("failed to confirm env file changes: %s", exc)
            return CycleReport(CycleOutcome.CONFIRM_FAILED, updates, str(exc))

        self.baseline.record(snapshot)

        try:
            self._reloader.reload_and_restart()
        except ReloadError as exc:
            logger.warning("failed to reload/restart service: %s", exc)
            return CycleReport(CycleOutcome.RELOAD_FAILED, updates, str(exc))
        logger.info("Successfully reloaded systemd and restarted service")
        return CycleReport(CycleOutcome.APPLIED, updates)

    def _run_cycle_guarded(self) -> CycleReport:
        try:
            return self.run_cycle()
        except Exception as exc:
            logger.exception("unexpected error during sync cycle")
            return CycleReport(CycleOutcome.ERROR, error=str(exc))

    def run_forever(
        self,
        interval_s: float,
        *,
        stop_event: Optional[threading.Event] = None,
        max_cycles: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> int:
        """Run one cycle now, then one per ``interval_s`` until stopped.

        Ticks sit on a fixed grid of ``interval_s`` from the first cycle, not
        from cycle completion. A cycle that overruns its slot makes the next
        one start immediately; further missed ticks are dropped rather than
        replayed back to back, and the cycle after that lands on the grid.
        Returns the number of cycles run.
        """
        stop = stop_event or threading.Event()
        cycles = 0
        next_tick = clock()
        while not stop.is_set():
            self._run_cycle_guarded()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            now = clock()
            next_tick += interval_s
            if next_tick < now:
                logger.warning("sync cycle overran the %.1fs interval", interval_s)
                next_tick += ((now - next_tick) // interval_s) * interval_s
            if stop.wait(max(0.0, next_tick - now)):
                break
        logger.info("Sync loop stopped after %d cycle(s)", cycles)
        return cycles
