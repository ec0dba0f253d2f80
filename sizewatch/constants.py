"""SizeWatch - 常量定义模块.

统一管理错误分类、HTTP 状态码和监控相关的常量.
"""

from decimal import Decimal
from enum import Enum


class ErrorCategory(Enum):
    """错误分类枚举."""

    VALIDATION = "validation"
    BUSINESS = "business"
    DATABASE = "database"
    EXTERNAL = "external"
    NETWORK = "network"
    SCHEDULER = "scheduler"
    SYSTEM = "system"


class ErrorSeverity(Enum):
    """错误严重程度枚举."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorMessages:
    """错误消息常量."""

    INTERNAL_ERROR = "服务器内部错误"
    VALIDATION_ERROR = "数据验证失败"
    CONFIGURATION_ERROR = "配置无效"
    DATABASE_CONNECTION_ERROR = "数据库连接失败"
    DATABASE_QUERY_ERROR = "数据库查询错误"
    CONSTRAINT_VIOLATION = "数据约束错误"
    PERSISTENCE_ERROR = "容量快照写入失败"
    DUPLICATE_SNAPSHOT = "当天快照已存在"
    NOTIFICATION_FAILED = "告警通知发送失败"
    SCHEDULING_INVARIANT = "下一次执行时间必须晚于当前时间"
    CYCLE_ALREADY_RUNNING = "采集周期正在运行"


class HttpStatus:
    """常用 HTTP 状态码."""

    OK = 200
    ACCEPTED = 202
    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503


class SizeSegment(Enum):
    """容量分段标签后缀."""

    DATA = "_Data"
    LOG = "_Log"

    def label_for(self, database_name: str) -> str:
        """拼接数据库名称与分段后缀."""
        return f"{database_name}{self.value}"


class TriggerSource:
    """采集周期触发来源."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"


class TriggerStatus:
    """手动触发的返回状态."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    COMPLETED = "completed"


class ServerCycleStatus:
    """单个服务器在一次采集周期中的结果."""

    SUCCESS = "success"
    COLLECTION_FAILED = "collection_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class CycleStatus:
    """采集周期整体状态."""

    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"


# 容量单位换算: sys.master_files.size 以 8KB 页为单位
PAGES_TO_MB = Decimal(8) / Decimal(1024)
SIZE_QUANTUM = Decimal("0.01")
DEFAULT_GROWTH_THRESHOLD = Decimal("0.03")

MONITOR_JOB_ID = "monitor_database_sizes"
MONITOR_JOB_NAME = "数据库容量监控"
