"""统一时间处理工具模块.

基于 zoneinfo 提供一致的时间处理功能,调度与快照日期均以监控时区为准.
"""

from datetime import UTC, date, datetime, tzinfo

from tzlocal import get_localzone


class TimeFormats:
    """时间格式常量."""

    DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
    DATE_FORMAT = "%Y-%m-%d"
    TIME_FORMAT = "%H:%M"


class TimeUtils:
    """统一时间处理工具类."""

    @staticmethod
    def now() -> datetime:
        """获取当前 UTC 时间.

        Returns:
            带 UTC 时区信息的当前时间.

        """
        return datetime.now(UTC)

    @staticmethod
    def now_local(tz: tzinfo | None = None) -> datetime:
        """获取指定时区(默认主机时区)的当前时间.

        Args:
            tz: 目标时区,为空时使用主机本地时区.

        Returns:
            带时区信息的当前时间.

        """
        return datetime.now(tz or get_localzone())

    @classmethod
    def today(cls, tz: tzinfo | None = None) -> date:
        """获取监控时区下的当前日期."""
        return cls.now_local(tz).date()

    @staticmethod
    def format_datetime(dt: datetime | None, format_str: str = TimeFormats.DATETIME_FORMAT) -> str:
        """格式化时间,空值返回空字符串."""
        if dt is None:
            return ""
        return dt.strftime(format_str)


time_utils = TimeUtils()
