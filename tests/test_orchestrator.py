from __future__ import annotations

import threading
from pathlib import Path
from typing import List

import pytest

from config_watcher.change_detector import Baseline
from config_watcher.config_store import ConfigStore
from config_watcher.errors import FetchError, FileIOError, ReloadError
from config_watcher.orchestrator import CycleOutcome, SyncOrchestrator
from config_watcher.parameters import ParameterSnapshot
from config_watcher.service_reloader import DryRunExecutor, ServiceReloader

# ===========================================================================
# Fakes
# ===========================================================================


class FakeSource:
    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = 0

    def fetch_snapshot(self) -> ParameterSnapshot:
        self.calls += 1
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return ParameterSnapshot(item)


class FakeReloader:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    def reload_and_restart(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return []


class TamperingStore(ConfigStore):
    """Simulates an external edit landing between write and confirm."""

    def apply(self, updates):
        path = super().apply(updates)
        path.write_text("BID_SMALL_AMOUNT=999\n")
        return path


class FailingStore(ConfigStore):
    def apply(self, updates):
        raise FileIOError("read-only filesystem")


def _orchestrator(tmp_path: Path, source, *, store=None, reloader=None) -> SyncOrchestrator:
    return SyncOrchestrator(
        source=source,
        store=store or ConfigStore(tmp_path / ".env"),
        reloader=reloader or FakeReloader(),
    )


# ===========================================================================
# Cycle state machine
# ===========================================================================


def test_end_to_end_apply_then_identical_poll_is_noop(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("# bidder\nexport BID_SMALL_AMOUNT=0.05\n")
    reloader = ServiceReloader(DryRunExecutor())
    orch = _orchestrator(tmp_path, FakeSource({"small_bid": 0.1}), reloader=reloader)

    first = orch.run_cycle()
    assert first.outcome is CycleOutcome.APPLIED
    assert first.updates == {"BID_SMALL_AMOUNT": "0.1"}
    assert env_file.read_text() == "# bidder\nexport BID_SMALL_AMOUNT=0.1\n"
    assert orch.baseline.initialized
    assert orch.baseline.get("small_bid") == 0.1

    second = orch.run_cycle()
    assert second.outcome is CycleOutcome.NO_CHANGES
    assert second.updates == {}


def test_fetch_failure_short_circuits(tmp_path: Path):
    reloader = FakeReloader()
    orch = _orchestrator(tmp_path, FakeSource(FetchError("connection refused")), reloader=reloader)
    report = orch.run_cycle()
    assert report.outcome is CycleOutcome.FETCH_FAILED
    assert "connection refused" in report.error
    assert not (tmp_path / ".env").exists()
    assert reloader.calls == 0
    assert orch.baseline == Baseline()


def test_apply_failure_keeps_baseline_and_retries_next_cycle(tmp_path: Path):
    source = FakeSource({"small_bid": 0.2})
    orch = _orchestrator(tmp_path, source, store=FailingStore(tmp_path / ".env"))
    report = orch.run_cycle()
    assert report.outcome is CycleOutcome.APPLY_FAILED
    assert orch.baseline == Baseline()

    orch._store = ConfigStore(tmp_path / ".env")
    retry = orch.run_cycle()
    assert retry.outcome is CycleOutcome.APPLIED
    assert retry.updates == {"BID_SMALL_AMOUNT": "0.2"}


def test_confirm_mismatch_does_not_advance_baseline(tmp_path: Path, caplog: pytest.LogCaptureFixture):
    baseline = Baseline()
    baseline.record(ParameterSnapshot({"small_bid": 0.1, "max_concurrency": 2}))
    before = baseline.copy()
    reloader = FakeReloader()
    orch = SyncOrchestrator(
        source=FakeSource({"small_bid": 0.3, "max_concurrency": 4}),
        store=TamperingStore(tmp_path / ".env"),
        reloader=reloader,
        baseline=baseline,
    )

    report = orch.run_cycle()

    assert report.outcome is CycleOutcome.CONFIRM_FAILED
    assert orch.baseline == before
    assert reloader.calls == 0
    assert any(rec.levelname == "CRITICAL" for rec in caplog.records)


def test_reload_failure_keeps_advanced_baseline(tmp_path: Path):
    reloader = FakeReloader(ReloadError("restart", "sudo systemctl restart bidder", "unit failed"))
    orch = _orchestrator(tmp_path, FakeSource({"large_bid": 0.5}), reloader=reloader)
    report = orch.run_cycle()
    assert report.outcome is CycleOutcome.RELOAD_FAILED
    assert report.baseline_advanced
    assert orch.baseline.get("large_bid") == 0.5
    assert (tmp_path / ".env").read_text() == "BID_LARGE_AMOUNT=0.5\n"


def test_baseline_advances_only_for_present_parameters(tmp_path: Path):
    orch = _orchestrator(tmp_path, FakeSource({"small_bid": 0.1}, {"max_concurrency": 3}))
    orch.run_cycle()
    orch.run_cycle()
    assert orch.baseline.values == {"small_bid": 0.1, "max_concurrency": 3}
    assert not orch.baseline.has("large_bid")


# ===========================================================================
# Loop
# ===========================================================================


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeStopEvent:
    def __init__(self, clock: FakeClock, stop_after_waits: int):
        self._clock = clock
        self._stop_after = stop_after_waits
        self._set = False
        self.waits: List[float] = []

    def is_set(self) -> bool:
        return self._set

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        self._clock.now += timeout
        if len(self.waits) >= self._stop_after:
            self._set = True
        return self._set


class SlowSource:
    def __init__(self, clock: FakeClock, durations: List[float]):
        self._clock = clock
        self._durations = list(durations)
        self.starts: List[float] = []

    def fetch_snapshot(self) -> ParameterSnapshot:
        self.starts.append(self._clock.now)
        self._clock.now += self._durations.pop(0)
        return ParameterSnapshot({})


def test_loop_schedules_from_previous_tick_not_completion(tmp_path: Path):
    clock = FakeClock()
    stop = FakeStopEvent(clock, stop_after_waits=3)
    orch = _orchestrator(tmp_path, SlowSource(clock, [0.0, 45.0, 5.0]))

    cycles = orch.run_forever(30.0, stop_event=stop, clock=clock)

    assert cycles == 3
    # Overrun cycle starts the next one immediately, then cadence resumes.
    assert stop.waits == [30.0, 0.0, 10.0]


@pytest.mark.parametrize(
    ("durations", "starts"),
    [
        ([0.0, 45.0, 5.0, 0.0], [0.0, 30.0, 75.0, 90.0]),
        ([0.0, 75.0, 0.0, 0.0], [0.0, 30.0, 105.0, 120.0]),
    ],
)
def test_loop_keeps_tick_grid_after_overrun(tmp_path: Path, durations, starts):
    clock = FakeClock()
    stop = FakeStopEvent(clock, stop_after_waits=10)
    source = SlowSource(clock, durations)
    orch = _orchestrator(tmp_path, source)

    cycles = orch.run_forever(30.0, stop_event=stop, max_cycles=len(durations), clock=clock)

    assert cycles == len(durations)
    assert source.starts == starts


def test_loop_survives_unexpected_errors(tmp_path: Path):
    source = FakeSource(RuntimeError("boom"), {"small_bid": 0.1})
    clock = FakeClock()
    stop = FakeStopEvent(clock, stop_after_waits=10)
    orch = _orchestrator(tmp_path, source)

    cycles = orch.run_forever(1.0, stop_event=stop, max_cycles=2, clock=clock)

    assert cycles == 2
    assert orch.baseline.get("small_bid") == 0.1


def test_loop_stops_when_event_already_set(tmp_path: Path):
    stop = threading.Event()
    stop.set()
    source = FakeSource({"small_bid": 0.1})
    assert _orchestrator(tmp_path, source).run_forever(1.0, stop_event=stop) == 0
    assert source.calls == 0


def test_single_cycle_with_max_cycles(tmp_path: Path):
    source = FakeSource({"small_bid": 0.1})
    assert _orchestrator(tmp_path, source).run_forever(3600.0, max_cycles=1) == 1
    assert source.calls == 1
