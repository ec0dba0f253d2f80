"""SizeWatch 定时任务调度器.

使用 APScheduler 每天在配置的本地时间执行一次容量监控周期,并通过文件锁控制单实例运行.
"""

from __future__ import annotations

import atexit
import os
from datetime import datetime, time, timedelta, tzinfo
from pathlib import Path
from typing import IO, TYPE_CHECKING

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobEvent,
    JobExecutionEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - Windows 环境不会加载
    fcntl = None

from sizewatch.constants import MONITOR_JOB_ID, MONITOR_JOB_NAME
from sizewatch.errors import SchedulingInvariantError
from sizewatch.utils.structlog_config import get_system_logger
from sizewatch.utils.time_utils import time_utils

if TYPE_CHECKING:
    from collections.abc import Callable

    from apscheduler.job import Job

    from sizewatch.settings import Settings

logger = get_system_logger()

LOCK_PATH = Path("userdata") / "scheduler.lock"

LOCK_IO_EXCEPTIONS: tuple[type[BaseException], ...] = (OSError,)
SCHEDULER_INIT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    OSError,
    RuntimeError,
    LookupError,
    ValueError,
    SchedulingInvariantError,
)


def compute_next_run(now: datetime, hour: int, minute: int) -> datetime:
    """计算严格晚于 `now` 的下一个 hour:minute.

    今天的目标时间已过(或恰好等于当前时间)时取明天. 返回值与 `now` 使用同一时区.

    Args:
        now: 当前时间.
        hour: 0-23.
        minute: 0-59.

    Returns:
        datetime: 下一次执行时间.

    Raises:
        SchedulingInvariantError: 计算结果不晚于 `now`.

    Example:
        >>> compute_next_run(datetime(2024, 5, 1, 5, 59), 6, 0)
        datetime.datetime(2024, 5, 1, 6, 0)
        >>> compute_next_run(datetime(2024, 5, 1, 6, 1), 6, 0)
        datetime.datetime(2024, 5, 2, 6, 0)

    """
    target = time(hour=hour, minute=minute)
    candidate = datetime.combine(now.date(), target, tzinfo=now.tzinfo)
    if candidate <= now:
        candidate = datetime.combine(now.date() + timedelta(days=1), target, tzinfo=now.tzinfo)
    if candidate <= now:
        raise SchedulingInvariantError(
            extra={"now": now.isoformat(), "next_run": candidate.isoformat(), "hour": hour, "minute": minute},
        )
    return candidate


class DailyTrigger(BaseTrigger):
    """每天固定本地时间触发,下一次触发时间总是严格晚于当前时间."""

    __slots__ = ("hour", "minute", "timezone")

    def __init__(self, hour: int, minute: int, timezone: tzinfo) -> None:
        self.hour = hour
        self.minute = minute
        self.timezone = timezone

    def get_next_fire_time(self, previous_fire_time: datetime | None, now: datetime) -> datetime:
        return compute_next_run(now.astimezone(self.timezone), self.hour, self.minute)

    def __str__(self) -> str:
        return f"daily[{self.hour:02d}:{self.minute:02d}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} (hour={self.hour}, minute={self.minute}, timezone='{self.timezone}')>"


class TaskScheduler:
    """定时任务调度器."""

    def __init__(self, settings: Settings) -> None:
        """初始化调度器包装类.

        Args:
            settings: 统一配置对象,提供执行时间、时区与错过执行容忍度.

        """
        self.settings = settings
        self.timezone = settings.schedule_timezone
        self.scheduler: BackgroundScheduler = self._setup_scheduler()

    def _setup_scheduler(self) -> BackgroundScheduler:
        """配置 APScheduler 并注册事件监听.

        任务函数是绑定到应用的方法,使用内存 jobstore;单线程执行器保证周期串行.
        """
        jobstores = {"default": MemoryJobStore()}
        executors = {"default": ThreadPoolExecutor(max_workers=1)}
        job_defaults = {
            "coalesce": True,  # 合并错过的多次执行
            "max_instances": 1,
            "misfire_grace_time": self.settings.monitor_misfire_grace_seconds,
        }

        scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone,
        )

        scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        scheduler.add_listener(self._job_skipped, EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES)
        return scheduler

    def _job_executed(self, event: JobExecutionEvent) -> None:
        report = event.retval
        logger.info(
            "任务执行成功",
            job_id=event.job_id,
            status=getattr(report, "status", "skipped"),
            next_run=self.describe_next_run(),
        )

    def _job_error(self, event: JobExecutionEvent) -> None:
        exception_str = str(event.exception) if event.exception else "未知错误"
        logger.error(
            "任务执行失败",
            job_id=event.job_id,
            error=exception_str,
            traceback=event.traceback,
        )

    def _job_skipped(self, event: JobEvent) -> None:
        logger.warning(
            "任务本次未执行",
            job_id=event.job_id,
            reason="missed" if event.code == EVENT_JOB_MISSED else "max_instances",
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """启动调度器."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("定时任务调度器已启动", timezone=str(self.timezone))
        else:
            logger.warning("定时任务调度器已经在运行,跳过启动")

    def stop(self, *, wait: bool = True) -> None:
        """停止调度器.

        等待中的下一次触发会被取消;正在执行的周期会在执行完毕后再退出.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("定时任务调度器已停止")

    def add_monitor_job(self, func: Callable[[], object]) -> Job:
        """注册每日容量监控任务.

        Args:
            func: 执行一次采集周期的可调用对象.

        Returns:
            Job: APScheduler 任务对象.

        """
        trigger = DailyTrigger(self.settings.monitor_hour, self.settings.monitor_minute, self.timezone)
        job = self.scheduler.add_job(
            func,
            trigger,
            id=MONITOR_JOB_ID,
            name=MONITOR_JOB_NAME,
            replace_existing=True,
        )
        logger.info("添加调度任务", task_id=MONITOR_JOB_ID, task_name=MONITOR_JOB_NAME, trigger=str(trigger))
        return job

    def get_job(self, job_id: str = MONITOR_JOB_ID) -> Job | None:
        return self.scheduler.get_job(job_id)

    def next_run_time(self) -> datetime | None:
        job = self.get_job()
        return getattr(job, "next_run_time", None) if job is not None else None

    def describe_next_run(self) -> str:
        return time_utils.format_datetime(self.next_run_time())


class _SchedulerState:
    """记录调度器文件锁句柄、所属进程与已初始化的调度器."""

    def __init__(self) -> None:
        self.handle: IO[str] | None = None
        self.pid: int | None = None
        self.scheduler: TaskScheduler | None = None


_STATE = _SchedulerState()


def get_scheduler() -> TaskScheduler | None:
    """返回当前进程中运行的调度器,未启动时返回 None."""
    return _STATE.scheduler


def _acquire_scheduler_lock() -> bool:
    """尝试获取文件锁,确保单进程运行调度器."""
    if fcntl is None:
        logger.warning("当前平台不支持fcntl,无法加文件锁,可能存在多个调度器实例并发运行")
        return True

    current_pid = os.getpid()
    if _STATE.handle:
        if _STATE.pid == current_pid:
            return True
        # 子进程继承了锁句柄,但并未真正持有锁,需要重新获取
        try:  # pragma: no cover
            _STATE.handle.close()
        except LOCK_IO_EXCEPTIONS as close_error:
            logger.warning("继承的调度器锁句柄关闭失败", error=str(close_error))
        _STATE.handle = None
        _STATE.pid = None

    LOCK_PATH.parent.mkdir(exist_ok=True)
    handle = LOCK_PATH.open("w+")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        logger.info("检测到其他进程正在运行调度器,跳过当前进程的调度器初始化")
        return False
    except LOCK_IO_EXCEPTIONS as lock_error:  # pragma: no cover
        handle.close()
        logger.exception("获取调度器锁失败", error=str(lock_error))
        return False
    else:
        handle.write(str(current_pid))
        handle.flush()
        _STATE.handle = handle
        _STATE.pid = current_pid
        logger.info("调度器锁已获取,当前进程负责运行定时任务", pid=current_pid)
        return True


def _release_scheduler_lock() -> None:
    """释放调度器文件锁并清理句柄."""
    if fcntl is None or not _STATE.handle:
        return
    try:  # pragma: no cover
        fcntl.flock(_STATE.handle, fcntl.LOCK_UN)
    except LOCK_IO_EXCEPTIONS as unlock_error:
        logger.warning("释放调度器文件锁失败", error=str(unlock_error))
    try:  # pragma: no cover
        _STATE.handle.close()
    except LOCK_IO_EXCEPTIONS as close_error:
        logger.warning("关闭调度器锁文件失败", error=str(close_error))
    finally:
        _STATE.handle = None
        _STATE.pid = None


def shutdown_scheduler() -> None:
    """停止调度器(等待进行中的周期结束)并释放文件锁."""
    if _STATE.scheduler is not None:
        _STATE.scheduler.stop(wait=True)
        _STATE.scheduler = None
    _release_scheduler_lock()


atexit.register(shutdown_scheduler)


def _should_start_scheduler(settings: Settings) -> bool:
    """根据配置及进程角色判断是否需启动调度器."""
    if not settings.enable_scheduler:
        logger.info("检测到调度器禁用标记,跳过初始化")
        return False

    if settings.server_software.startswith("gunicorn"):
        logger.info("检测到 gunicorn 环境,通过文件锁保持单实例", parent_pid=os.getppid())

    # Flask reloader: 只有子进程 (WERKZEUG_RUN_MAIN=true) 才运行调度器
    if settings.flask_run_from_cli and not settings.werkzeug_run_main:
        logger.info("检测到 Flask reloader 父进程,跳过调度器初始化")
        return False

    return True


def init_scheduler(settings: Settings, job_func: Callable[[], object]) -> TaskScheduler | None:
    """初始化调度器(仅在允许的进程中启动).

    Args:
        settings: 统一配置对象.
        job_func: 每日执行的任务函数.

    Returns:
        TaskScheduler | None: 初始化成功时返回 TaskScheduler,否则返回 None.

    """
    if not _should_start_scheduler(settings):
        return None

    if _STATE.scheduler is not None:
        logger.warning("调度器已经初始化过,跳过重复初始化")
        return _STATE.scheduler

    if not _acquire_scheduler_lock():
        return None

    task_scheduler = TaskScheduler(settings)
    try:
        task_scheduler.start()
        task_scheduler.add_monitor_job(job_func)
    except SCHEDULER_INIT_EXCEPTIONS as init_error:
        logger.exception("调度器初始化失败", error=str(init_error))
        task_scheduler.stop(wait=False)
        _release_scheduler_lock()
        return None

    _STATE.scheduler = task_scheduler
    logger.info("调度器初始化完成", next_run=task_scheduler.describe_next_run())
    return task_scheduler
