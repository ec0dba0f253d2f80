"""SQL Server 数据库连接适配器."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pymssql

from sizewatch.errors import ConnectionFailureError, QueryFailureError
from sizewatch.utils.structlog_config import get_db_logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

SQLSERVER_CONNECTION_EXCEPTIONS: tuple[type[BaseException], ...] = (
    pymssql.Error,
    ConnectionError,
    TimeoutError,
    OSError,
)

DEFAULT_SQLSERVER_PORT = 1433
DEFAULT_SQLSERVER_DATABASE = "master"

_SERVER_KEYS = ("server", "data source", "address", "addr", "network address")
_DATABASE_KEYS = ("database", "initial catalog")
_USER_KEYS = ("user id", "uid", "user")
_PASSWORD_KEYS = ("password", "pwd")


@dataclass(frozen=True, slots=True)
class SQLServerConnectionInfo:
    """解析后的 SQL Server 连接参数."""

    host: str
    port: int = DEFAULT_SQLSERVER_PORT
    database: str = DEFAULT_SQLSERVER_DATABASE
    username: str = ""
    password: str = field(default="", repr=False)


def _first_value(options: dict[str, str], keys: Sequence[str]) -> str:
    for key in keys:
        value = options.get(key)
        if value:
            return value
    return ""


def parse_connection_string(connection_string: str) -> SQLServerConnectionInfo:
    """解析 `Server=host,port;Database=...;User Id=...;Password=...` 形式的连接串.

    键名不区分大小写,`Server` 可以写作 `Data Source`,端口可以用逗号附在主机后.

    Args:
        connection_string: 连接串.

    Returns:
        SQLServerConnectionInfo: 连接参数.

    Raises:
        ValueError: 缺少服务器地址或端口非法.

    """
    options: dict[str, str] = {}
    for segment in connection_string.split(";"):
        if "=" not in segment:
            continue
        key, _, value = segment.partition("=")
        options[key.strip().lower()] = value.strip()

    server = _first_value(options, _SERVER_KEYS)
    if server.lower().startswith("tcp:"):
        server = server[4:]
    if not server:
        raise ValueError("连接串缺少 Server/Data Source")

    host, _, raw_port = server.partition(",")
    try:
        port = int(raw_port) if raw_port.strip() else DEFAULT_SQLSERVER_PORT
    except ValueError as exc:
        raise ValueError(f"连接串端口非法: {raw_port}") from exc

    return SQLServerConnectionInfo(
        host=host.strip(),
        port=port,
        database=_first_value(options, _DATABASE_KEYS) or DEFAULT_SQLSERVER_DATABASE,
        username=_first_value(options, _USER_KEYS),
        password=_first_value(options, _PASSWORD_KEYS),
    )


class SQLServerConnection:
    """SQL Server 数据库连接(基于 pymssql).

    支持上下文管理器,退出时自动断开连接.

    Example:
        >>> with SQLServerConnection(info) as connection:
        ...     rows = connection.execute_query("SELECT 1")

    """

    def __init__(
        self,
        info: SQLServerConnectionInfo,
        *,
        login_timeout: int = 20,
        query_timeout: int = 60,
    ) -> None:
        self.info = info
        self.login_timeout = login_timeout
        self.query_timeout = query_timeout
        self.db_logger = get_db_logger()
        self.connection: Any | None = None

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    def connect(self) -> None:
        """建立 SQL Server 连接.

        Raises:
            ConnectionFailureError: 无法连接目标服务器.

        """
        try:
            self.connection = pymssql.connect(
                server=self.info.host,
                port=str(self.info.port),
                user=self.info.username,
                password=self.info.password,
                database=self.info.database,
                timeout=self.query_timeout,
                login_timeout=self.login_timeout,
            )
        except SQLSERVER_CONNECTION_EXCEPTIONS as exc:
            self.db_logger.warning(
                "SQL Server连接失败",
                module="connection",
                host=self.info.host,
                port=self.info.port,
                database=self.info.database,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ConnectionFailureError(
                f"无法连接 SQL Server {self.info.host}:{self.info.port}: {exc}",
                extra={"host": self.info.host, "port": self.info.port},
            ) from exc

    def disconnect(self) -> None:
        """断开连接并清理状态."""
        if self.connection is None:
            return
        try:
            self.connection.close()
        except SQLSERVER_CONNECTION_EXCEPTIONS as exc:
            self.db_logger.warning(
                "SQL Server断开连接出现异常",
                module="connection",
                host=self.info.host,
                error=str(exc),
            )
        finally:
            self.connection = None

    def execute_query(self, query: str) -> list[tuple[Any, ...]]:
        """执行 SQL 查询并返回 `fetchall` 结果.

        Raises:
            QueryFailureError: 查询执行失败.

        """
        if self.connection is None:
            self.connect()
        try:
            cursor = self.connection.cursor()
            try:
                cursor.execute(query)
                return list(cursor.fetchall())
            finally:
                cursor.close()
        except SQLSERVER_CONNECTION_EXCEPTIONS as exc:
            raise QueryFailureError(
                f"SQL Server 查询失败 {self.info.host}: {exc}",
                extra={"host": self.info.host},
            ) from exc

    def __enter__(self) -> SQLServerConnection:
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.disconnect()
