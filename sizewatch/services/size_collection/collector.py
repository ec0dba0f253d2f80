"""SQL Server 容量采集器."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sizewatch.constants import PAGES_TO_MB
from sizewatch.errors import QueryFailureError
from sizewatch.services.size_collection.connection import SQLServerConnection
from sizewatch.utils.structlog_config import get_sync_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from sizewatch.services.server_profiles import ServerProfile
    from sizewatch.settings import Settings

    ConnectionFactory = Callable[[ServerProfile], SQLServerConnection]

# sys.master_files.size 以 8KB 页为单位,在 Python 侧换算成 MB 以保持精确
SIZE_QUERY = """
    SELECT
        DB_NAME(database_id) AS DatabaseName,
        SUM(CASE WHEN type_desc = 'ROWS' THEN CAST(size AS BIGINT) ELSE 0 END) AS DataPages,
        SUM(CASE WHEN type_desc = 'LOG' THEN CAST(size AS BIGINT) ELSE 0 END) AS LogPages
    FROM sys.master_files
    GROUP BY database_id
"""


@dataclass(frozen=True, slots=True)
class Measurement:
    """单个数据库的实时容量(MB,未舍入,写入审计表时才保留两位小数)."""

    database_name: str
    data_mb: Decimal
    log_mb: Decimal


def pages_to_mb(pages: Any) -> Decimal:
    """将 8KB 页数精确换算为 MB,不做舍入.

    Raises:
        InvalidOperation: 页数无法转换为 Decimal.
        ValueError: 页数为负.

    """
    value = Decimal(str(pages))
    if value < 0:
        raise ValueError(f"页数不能为负: {pages}")
    return value * PAGES_TO_MB


class SQLServerSizeCollector:
    """采集单个 SQL Server 上所有数据库的数据文件与日志文件容量.

    Example:
        >>> collector = SQLServerSizeCollector.from_settings(settings)
        >>> measurements = collector.collect(profile)

    """

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connection_factory = connection_factory
        self.logger = get_sync_logger()

    @classmethod
    def from_settings(cls, settings: Settings) -> SQLServerSizeCollector:
        def _factory(profile: ServerProfile) -> SQLServerConnection:
            return SQLServerConnection(
                profile.connection_info,
                login_timeout=settings.sqlserver_login_timeout_seconds,
                query_timeout=settings.sqlserver_query_timeout_seconds,
            )

        return cls(_factory)

    def collect(self, profile: ServerProfile) -> list[Measurement]:
        """连接服务器并采集容量.

        Args:
            profile: 服务器配置.

        Returns:
            list[Measurement]: 服务器上可见的每个数据库的容量.

        Raises:
            ConnectionFailureError: 无法连接服务器.
            QueryFailureError: 查询失败或结果无法解析.

        """
        with self._connection_factory(profile) as connection:
            rows = connection.execute_query(SIZE_QUERY)

        measurements = [
            measurement for measurement in (self._parse_row(profile, row) for row in rows) if measurement is not None
        ]
        self.logger.info(
            "容量采集完成",
            module="size_collection",
            server_id=profile.id,
            server_alias=profile.display_name,
            database_count=len(measurements),
        )
        return measurements

    @staticmethod
    def _parse_row(profile: ServerProfile, row: Any) -> Measurement | None:
        try:
            name, data_pages, log_pages = row[0], row[1], row[2]
        except (IndexError, KeyError, TypeError) as exc:
            raise QueryFailureError(
                f"容量查询结果格式非法: {row!r}",
                extra={"server_id": profile.id},
            ) from exc

        if name is None or not str(name).strip():
            return None
        try:
            return Measurement(
                database_name=str(name).strip(),
                data_mb=pages_to_mb(data_pages or 0),
                log_mb=pages_to_mb(log_pages or 0),
            )
        except (InvalidOperation, ValueError) as exc:
            raise QueryFailureError(
                f"数据库 {name} 的容量无法解析",
                extra={"server_id": profile.id, "database_name": str(name)},
            ) from exc
