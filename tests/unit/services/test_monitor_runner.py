import threading
from datetime import date

import pytest
from flask import Flask

from sizewatch.constants import TriggerSource, TriggerStatus
from sizewatch.services.monitor_cycle_service import CycleReport
from sizewatch.services.monitor_runner import MonitorRunner, get_monitor_runner
from sizewatch.utils.time_utils import time_utils


def _report(trigger_source: str, captured_date) -> CycleReport:
    return CycleReport(
        trigger_source=trigger_source,
        captured_date=captured_date or date(2026, 3, 10),
        started_at=time_utils.now(),
    )


class _BlockingCycleService:
    """run_cycle 阻塞到 release 被设置,用于模拟执行中的周期."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: list[str] = []

    def run_cycle(self, trigger_source: str, *, captured_date=None) -> CycleReport:
        self.calls.append(trigger_source)
        self.started.set()
        self.release.wait(timeout=5)
        return _report(trigger_source, captured_date)


class _InstantCycleService:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.dates: list = []

    def run_cycle(self, trigger_source: str, *, captured_date=None) -> CycleReport:
        self.calls.append(trigger_source)
        self.dates.append(captured_date)
        return _report(trigger_source, captured_date)


def _wait_until_idle(runner: MonitorRunner) -> None:
    for thread in threading.enumerate():
        if thread.name == "monitor_cycle_manual":
            thread.join(timeout=5)
    assert runner.is_running is False


@pytest.mark.unit
def test_manual_trigger_while_running_is_rejected() -> None:
    service = _BlockingCycleService()
    runner = MonitorRunner(Flask(__name__), service)

    first = runner.trigger_manual()
    assert first.status == TriggerStatus.STARTED
    assert service.started.wait(timeout=5)

    second = runner.trigger_manual()
    assert second.status == TriggerStatus.ALREADY_RUNNING
    assert runner.run_scheduled() is None

    service.release.set()
    _wait_until_idle(runner)
    assert service.calls == [TriggerSource.MANUAL]
    assert runner.last_report is not None


@pytest.mark.unit
def test_manual_trigger_wait_returns_report() -> None:
    service = _InstantCycleService()
    runner = MonitorRunner(Flask(__name__), service)

    result = runner.trigger_manual(wait=True)

    assert result.status == TriggerStatus.COMPLETED
    assert result.report is not None
    assert result.report.trigger_source == TriggerSource.MANUAL
    assert runner.is_running is False


@pytest.mark.unit
def test_scheduled_run_executes_and_releases_guard() -> None:
    service = _InstantCycleService()
    runner = MonitorRunner(Flask(__name__), service)

    report = runner.run_scheduled()

    assert report is not None
    assert service.calls == [TriggerSource.SCHEDULED]
    assert runner.trigger_manual(wait=True).status == TriggerStatus.COMPLETED


@pytest.mark.unit
def test_guard_is_released_when_cycle_raises() -> None:
    class _FailingCycleService:
        def run_cycle(self, trigger_source, *, captured_date=None):
            raise RuntimeError("boom")

    runner = MonitorRunner(Flask(__name__), _FailingCycleService())

    with pytest.raises(RuntimeError):
        runner.run_scheduled()

    assert runner.is_running is False


@pytest.mark.unit
def test_get_monitor_runner_requires_registration() -> None:
    with pytest.raises(RuntimeError):
        get_monitor_runner(Flask(__name__))


@pytest.mark.unit
def test_create_app_registers_runner(app) -> None:
    runner = get_monitor_runner(app)

    assert runner.app is app
    assert runner.cycle_service.profiles == ()


@pytest.mark.unit
def test_trigger_manual_forwards_captured_date() -> None:
    service = _InstantCycleService()
    runner = MonitorRunner(Flask(__name__), service)

    result = runner.trigger_manual(wait=True, captured_date=date(2026, 3, 1))

    assert service.dates == [date(2026, 3, 1)]
    assert result.report.captured_date == date(2026, 3, 1)


@pytest.mark.unit
def test_runners_sharing_lock_file_exclude_each_other(tmp_path) -> None:
    pytest.importorskip("fcntl")
    lock_path = tmp_path / "monitor_cycle.lock"
    blocking = _BlockingCycleService()
    worker_a = MonitorRunner(Flask(__name__), blocking, lock_path=lock_path)
    other = _InstantCycleService()
    worker_b = MonitorRunner(Flask(__name__), other, lock_path=lock_path)

    assert worker_a.trigger_manual().status == TriggerStatus.STARTED
    assert blocking.started.wait(timeout=5)

    assert worker_b.trigger_manual().status == TriggerStatus.ALREADY_RUNNING
    assert worker_b.trigger_manual(wait=True).status == TriggerStatus.ALREADY_RUNNING
    assert worker_b.run_scheduled() is None
    assert other.calls == []

    blocking.release.set()
    assert worker_a.shutdown(timeout=5) is True
    assert worker_b.trigger_manual(wait=True).status == TriggerStatus.COMPLETED
    assert other.calls == [TriggerSource.MANUAL]


@pytest.mark.unit
def test_lock_held_by_another_process_rejects_cycles(tmp_path) -> None:
    fcntl = pytest.importorskip("fcntl")
    lock_path = tmp_path / "monitor_cycle.lock"
    service = _InstantCycleService()
    runner = MonitorRunner(Flask(__name__), service, lock_path=lock_path)

    with lock_path.open("a+") as foreign_handle:
        fcntl.flock(foreign_handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        assert runner.trigger_manual(wait=True).status == TriggerStatus.ALREADY_RUNNING
        assert runner.run_scheduled() is None
        assert runner.is_running is False
        fcntl.flock(foreign_handle, fcntl.LOCK_UN)

    assert runner.run_scheduled() is not None
    assert service.calls == [TriggerSource.SCHEDULED]


@pytest.mark.unit
def test_shutdown_waits_for_running_manual_cycle(tmp_path) -> None:
    service = _BlockingCycleService()
    runner = MonitorRunner(Flask(__name__), service, lock_path=tmp_path / "monitor_cycle.lock")

    runner.trigger_manual()
    assert service.started.wait(timeout=5)
    manual_threads = [t for t in threading.enumerate() if t.name == "monitor_cycle_manual"]
    assert manual_threads
    assert all(not t.daemon for t in manual_threads)

    assert runner.shutdown(timeout=0.1) is False
    assert runner.last_report is None

    service.release.set()
    assert runner.shutdown(timeout=5) is True
    assert runner.last_report is not None
    assert runner.is_running is False


@pytest.mark.unit
def test_shutdown_without_manual_cycle_returns_immediately() -> None:
    runner = MonitorRunner(Flask(__name__), _InstantCycleService())

    assert runner.shutdown(timeout=0) is True
