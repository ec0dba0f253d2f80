"""SizeWatch - 统一异常定义.

集中维护业务异常类型、严重度与 HTTP 状态码映射.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from werkzeug.exceptions import HTTPException

from sizewatch.constants import ErrorCategory, ErrorMessages, ErrorSeverity, HttpStatus


@dataclass(frozen=True, slots=True)
class ExceptionMetadata:
    """异常的元信息."""

    status_code: int
    category: ErrorCategory
    severity: ErrorSeverity
    default_message_key: str

    @property
    def default_message(self) -> str:
        """根据 message key 获取默认文案."""
        return getattr(ErrorMessages, self.default_message_key, ErrorMessages.INTERNAL_ERROR)


class AppError(Exception):
    """统一的基础业务异常.

    Args:
        message: 自定义错误文案,若为空则根据 ``message_key`` 推导.
        message_key: 自定义消息键.
        extra: 结构化日志附加字段.
        severity: 错误严重度.
        category: 错误分类.

    """

    metadata = ExceptionMetadata(
        status_code=HttpStatus.INTERNAL_SERVER_ERROR,
        category=ErrorCategory.SYSTEM,
        severity=ErrorSeverity.HIGH,
        default_message_key="INTERNAL_ERROR",
    )

    def __init__(
        self,
        message: str | None = None,
        *,
        message_key: str | None = None,
        extra: dict[str, Any] | None = None,
        severity: ErrorSeverity | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        self.message_key = message_key or self.metadata.default_message_key
        self.message = message or getattr(ErrorMessages, self.message_key, ErrorMessages.INTERNAL_ERROR)
        self.extra = dict(extra or {})
        self.severity = severity or self.metadata.severity
        self.category = category or self.metadata.category
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        """返回异常对应的 HTTP 状态码."""
        return self.metadata.status_code

    @property
    def recoverable(self) -> bool:
        """严重度为 LOW/MEDIUM 时视为可恢复."""
        return self.severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM)


class ConfigurationError(AppError):
    """表示服务器清单或运行配置不合法.

    在启动阶段加载配置时抛出,默认返回 400.
    """

    metadata = ExceptionMetadata(
        status_code=HttpStatus.BAD_REQUEST,
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.HIGH,
        default_message_key="CONFIGURATION_ERROR",
    )


class ConnectionFailureError(AppError):
    """表示无法连接或查询被监控的 SQL Server 实例.

    仅导致当前服务器在本周期内被跳过,其它服务器继续处理.
    """

    metadata = ExceptionMetadata(
        status_code=HttpStatus.BAD_GATEWAY,
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.MEDIUM,
        default_message_key="DATABASE_CONNECTION_ERROR",
    )


class QueryFailureError(ConnectionFailureError):
    """容量查询返回了无法解析的结果,按连接失败处理."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.BAD_GATEWAY,
        category=ErrorCategory.DATABASE,
        severity=ErrorSeverity.MEDIUM,
        default_message_key="DATABASE_QUERY_ERROR",
    )


class PersistenceError(AppError):
    """表示某服务器的快照批次写入失败,整批已回滚."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.INTERNAL_SERVER_ERROR,
        category=ErrorCategory.DATABASE,
        severity=ErrorSeverity.HIGH,
        default_message_key="PERSISTENCE_ERROR",
    )


class DuplicateSnapshotError(AppError):
    """同一服务器、标签与日期的快照已经存在."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.CONFLICT,
        category=ErrorCategory.BUSINESS,
        severity=ErrorSeverity.LOW,
        default_message_key="DUPLICATE_SNAPSHOT",
    )


class NotificationError(AppError):
    """告警网关调用失败或超时."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.BAD_GATEWAY,
        category=ErrorCategory.EXTERNAL,
        severity=ErrorSeverity.LOW,
        default_message_key="NOTIFICATION_FAILED",
    )


class SchedulingInvariantError(AppError):
    """计算出的下一次执行时间不在未来,调度循环必须终止."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.INTERNAL_SERVER_ERROR,
        category=ErrorCategory.SCHEDULER,
        severity=ErrorSeverity.CRITICAL,
        default_message_key="SCHEDULING_INVARIANT",
    )


class CycleAlreadyRunningError(AppError):
    """已有采集周期在执行,新的触发被拒绝."""

    metadata = ExceptionMetadata(
        status_code=HttpStatus.CONFLICT,
        category=ErrorCategory.BUSINESS,
        severity=ErrorSeverity.LOW,
        default_message_key="CYCLE_ALREADY_RUNNING",
    )


def map_exception_to_status(error: Exception, default: int = HttpStatus.INTERNAL_SERVER_ERROR) -> int:
    """根据异常类型推导 HTTP 状态码.

    Args:
        error: 捕获到的异常对象.
        default: 无法匹配时的默认状态码.

    Returns:
        int: 与异常对应的 HTTP 状态码.

    """
    if isinstance(error, AppError):
        return error.status_code

    if isinstance(error, HTTPException):
        code = getattr(error, "code", None)
        if code is not None:
            return int(code)

    return default


__all__ = [
    "AppError",
    "ConfigurationError",
    "ConnectionFailureError",
    "CycleAlreadyRunningError",
    "DuplicateSnapshotError",
    "NotificationError",
    "PersistenceError",
    "QueryFailureError",
    "SchedulingInvariantError",
    "map_exception_to_status",
]
