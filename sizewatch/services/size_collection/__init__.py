"""SQL Server 容量采集."""

from sizewatch.services.size_collection.collector import Measurement, SQLServerSizeCollector
from sizewatch.services.size_collection.connection import (
    SQLSERVER_CONNECTION_EXCEPTIONS,
    SQLServerConnection,
    SQLServerConnectionInfo,
    parse_connection_string,
)

__all__ = [
    "SQLSERVER_CONNECTION_EXCEPTIONS",
    "Measurement",
    "SQLServerConnection",
    "SQLServerConnectionInfo",
    "SQLServerSizeCollector",
    "parse_connection_string",
]
