"""采集周期互斥与手动触发.

定时任务与手动触发共享同一个非阻塞锁,任一时刻最多只有一个周期在执行:
- 定时任务遇到正在运行的周期时跳过并记录日志;
- 手动触发遇到正在运行的周期时立即返回 already_running,不排队.

锁由进程内的线程锁与锁文件上的 `fcntl.flock` 组成,
gunicorn 的多个 worker 与命令行脚本之间同样互斥.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - Windows 环境不会加载
    fcntl = None

from sizewatch.constants import TriggerSource, TriggerStatus
from sizewatch.errors import AppError
from sizewatch.utils.structlog_config import get_task_logger

if TYPE_CHECKING:
    from datetime import date
    from pathlib import Path

    from flask import Flask

    from sizewatch.services.monitor_cycle_service import CycleReport, MonitorCycleService

BACKGROUND_CYCLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    AppError,
    SQLAlchemyError,
    RuntimeError,
)
CYCLE_LOCK_IO_EXCEPTIONS: tuple[type[BaseException], ...] = (OSError,)

MONITOR_RUNNER_EXTENSION_KEY = "sizewatch.monitor_runner"
MANUAL_THREAD_NAME = "monitor_cycle_manual"


@dataclass(frozen=True, slots=True)
class TriggerResult:
    """手动触发结果."""

    status: str
    report: CycleReport | None = None
    thread_name: str | None = None


class CycleGuard:
    """采集周期互斥锁.

    Attributes:
        lock_path: 跨进程锁文件路径,为 None 时只在当前进程内互斥.

    """

    def __init__(self, lock_path: Path | None = None) -> None:
        self.lock_path = lock_path
        self._thread_lock = threading.Lock()
        self._handle: IO[str] | None = None
        self.logger = get_task_logger()
        if lock_path is not None and fcntl is None:
            self.logger.warning("当前平台不支持fcntl,采集周期互斥仅在当前进程内生效", module="monitor")

    def locked(self) -> bool:
        """当前进程是否持有周期锁."""
        return self._thread_lock.locked()

    def acquire(self) -> bool:
        """非阻塞获取周期锁.

        Returns:
            bool: 获取成功返回 True;本进程或其他进程已有周期在执行返回 False.

        Raises:
            OSError: 锁文件无法创建或加锁.

        """
        if not self._thread_lock.acquire(blocking=False):
            return False
        if self.lock_path is None or fcntl is None:
            return True

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.lock_path.open("a+")
        except CYCLE_LOCK_IO_EXCEPTIONS:
            self._thread_lock.release()
            raise

        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            self._thread_lock.release()
            self.logger.info("其他进程正在执行采集周期", module="monitor", lock_path=str(self.lock_path))
            return False
        except CYCLE_LOCK_IO_EXCEPTIONS:
            handle.close()
            self._thread_lock.release()
            raise

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        return True

    def release(self) -> None:
        """释放周期锁,锁文件保留以便其他进程复用."""
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                try:
                    fcntl.flock(handle, fcntl.LOCK_UN)
                except CYCLE_LOCK_IO_EXCEPTIONS as unlock_error:
                    self.logger.warning("释放采集周期文件锁失败", module="monitor", error=str(unlock_error))
                handle.close()
        finally:
            self._thread_lock.release()


class MonitorRunner:
    """持有周期互斥锁并负责在应用上下文中执行周期."""

    def __init__(
        self,
        app: Flask,
        cycle_service: MonitorCycleService,
        *,
        lock_path: Path | None = None,
    ) -> None:
        self.app = app
        self.cycle_service = cycle_service
        self._guard = CycleGuard(lock_path)
        self._manual_thread: threading.Thread | None = None
        self._last_report: CycleReport | None = None
        self.logger = get_task_logger()

    @property
    def is_running(self) -> bool:
        """当前进程是否正在执行周期."""
        return self._guard.locked()

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def run_scheduled(self) -> CycleReport | None:
        """定时任务入口,已有周期运行时跳过."""
        if not self._guard.acquire():
            self.logger.warning("已有采集周期在运行,跳过本次定时执行", module="monitor", trigger_source="scheduled")
            return None
        try:
            return self._execute(TriggerSource.SCHEDULED)
        finally:
            self._guard.release()

    def trigger_manual(self, *, wait: bool = False, captured_date: date | None = None) -> TriggerResult:
        """手动触发一次周期.

        在调用线程上获取锁,保证接受/拒绝的结果立即确定;
        `wait=False` 时在后台线程执行并由该线程释放锁.

        Args:
            wait: 是否同步等待周期结束并返回报告.
            captured_date: 快照日期,默认取监控时区的今天.

        Returns:
            TriggerResult: started/completed/already_running.

        """
        if not self._guard.acquire():
            self.logger.info("手动触发被拒绝,已有采集周期在运行", module="monitor", trigger_source="manual")
            return TriggerResult(status=TriggerStatus.ALREADY_RUNNING)

        if wait:
            try:
                report = self._execute(TriggerSource.MANUAL, captured_date)
            finally:
                self._guard.release()
            return TriggerResult(status=TriggerStatus.COMPLETED, report=report)

        # 非守护线程: 进程退出前等待周期写完当前批次
        thread = threading.Thread(
            target=self._run_in_background,
            args=(captured_date,),
            name=MANUAL_THREAD_NAME,
        )
        try:
            thread.start()
        except RuntimeError:
            self._guard.release()
            raise
        self._manual_thread = thread
        return TriggerResult(status=TriggerStatus.STARTED, thread_name=thread.name)

    def shutdown(self, timeout: float | None = None) -> bool:
        """等待进行中的手动周期结束.

        Args:
            timeout: 最长等待秒数,None 表示一直等待.

        Returns:
            bool: 没有手动周期在执行时返回 True.

        """
        thread = self._manual_thread
        if thread is None or not thread.is_alive():
            return True
        self.logger.info("等待手动采集周期结束", module="monitor", thread_name=thread.name)
        thread.join(timeout)
        return not thread.is_alive()

    def _run_in_background(self, captured_date: date | None) -> None:
        try:
            self._execute(TriggerSource.MANUAL, captured_date)
        except BACKGROUND_CYCLE_EXCEPTIONS as exc:  # pragma: no cover
            self.logger.error(
                "后台采集周期执行失败",
                module="monitor",
                trigger_source="manual",
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
        finally:
            self._guard.release()

    def _execute(self, trigger_source: str, captured_date: date | None = None) -> CycleReport:
        with self.app.app_context():
            report = self.cycle_service.run_cycle(trigger_source, captured_date=captured_date)
        self._last_report = report
        return report


def get_monitor_runner(app: Flask) -> MonitorRunner:
    """返回应用上注册的 MonitorRunner."""
    runner = app.extensions.get(MONITOR_RUNNER_EXTENSION_KEY)
    if runner is None:
        msg = "MonitorRunner 未初始化"
        raise RuntimeError(msg)
    return runner
