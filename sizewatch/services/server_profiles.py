"""被监控服务器清单的加载与校验.

服务器清单来自 YAML 文件(`SERVERS_CONFIG_PATH`),连接串来自环境变量
`CONNECTION_STRINGS`,两者按服务器 id 合并后构造只读的 ServerProfile.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from sizewatch.errors import ConfigurationError
from sizewatch.services.size_collection.connection import SQLServerConnectionInfo, parse_connection_string
from sizewatch.utils.structlog_config import get_system_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sizewatch.settings import Settings


@dataclass(frozen=True, slots=True)
class ServerProfile:
    """单个被监控服务器的只读配置.

    Attributes:
        id: 服务器标识,同时用于匹配 `CONNECTION_STRINGS` 中的连接串.
        connection_ref: SQL Server 连接串.
        alias: 显示名称,为空时回退为连接串中的主机名.
        whitelist: 允许监控的数据库名称集合,None 表示不过滤.

    """

    id: str
    connection_ref: str
    alias: str | None = None
    whitelist: frozenset[str] | None = None

    def __repr__(self) -> str:
        return f"<ServerProfile(id='{self.id}', alias='{self.alias}', whitelist={self.whitelist_size})>"

    @property
    def connection_info(self) -> SQLServerConnectionInfo:
        return parse_connection_string(self.connection_ref)

    @property
    def display_name(self) -> str:
        """写入快照与告警中的服务器名称."""
        return self.alias or self.connection_info.host

    @property
    def whitelist_size(self) -> int | None:
        return None if self.whitelist is None else len(self.whitelist)


def _normalize_whitelist(server_id: str, raw: object) -> frozenset[str] | None:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ConfigurationError(f"服务器 {server_id} 的 whitelist 必须是列表")
    names = [str(item).strip() for item in raw]
    if any(not name for name in names):
        raise ConfigurationError(f"服务器 {server_id} 的 whitelist 含有空名称")
    return frozenset(names)


def build_server_profiles(
    entries: Iterable[Mapping[str, Any]],
    connection_strings: Mapping[str, str],
) -> tuple[ServerProfile, ...]:
    """根据清单条目与连接串构造 ServerProfile.

    未提供连接串的服务器会被跳过并记录警告.

    Args:
        entries: YAML 中 `servers` 列表的条目.
        connection_strings: 服务器 id 到连接串的映射.

    Returns:
        tuple[ServerProfile, ...]: 按清单顺序排列的服务器配置.

    Raises:
        ConfigurationError: 条目缺少 id、id 重复、whitelist 或连接串格式非法.

    """
    logger = get_system_logger()
    profiles: list[ServerProfile] = []
    seen: set[str] = set()

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"servers[{index}] 必须是映射")
        server_id = str(entry.get("id") or "").strip()
        if not server_id:
            raise ConfigurationError(f"servers[{index}] 缺少 id")
        if server_id in seen:
            raise ConfigurationError(f"服务器 id 重复: {server_id}")
        seen.add(server_id)

        connection_ref = connection_strings.get(server_id) or str(entry.get("connection") or "").strip()
        if not connection_ref:
            logger.warning("服务器未配置连接串,已跳过", module="config", server_id=server_id)
            continue
        try:
            parse_connection_string(connection_ref)
        except ValueError as exc:
            raise ConfigurationError(f"服务器 {server_id} 的连接串非法: {exc}") from exc

        alias = str(entry.get("alias") or "").strip() or None
        profiles.append(
            ServerProfile(
                id=server_id,
                connection_ref=connection_ref,
                alias=alias,
                whitelist=_normalize_whitelist(server_id, entry.get("whitelist")),
            ),
        )

    unknown = sorted(set(connection_strings) - seen)
    if unknown:
        logger.warning("连接串未在服务器清单中声明,已忽略", module="config", server_ids=unknown)
    return tuple(profiles)


def load_server_profiles(settings: Settings) -> tuple[ServerProfile, ...]:
    """读取 YAML 服务器清单并与 Settings 中的连接串合并.

    Raises:
        ConfigurationError: 文件不存在、YAML 无法解析或结构非法.

    """
    path = Path(settings.servers_config_path)
    if not path.exists():
        raise ConfigurationError(f"服务器清单文件不存在: {path}")
    try:
        with path.open(encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"服务器清单解析失败: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigurationError("服务器清单根节点必须是映射")
    entries = document.get("servers") or []
    if not isinstance(entries, list):
        raise ConfigurationError("servers 必须是列表")

    profiles = build_server_profiles(entries, settings.connection_strings)
    get_system_logger().info(
        "服务器清单加载完成",
        module="config",
        path=str(path),
        declared=len(entries),
        active=len(profiles),
        servers=[profile.display_name for profile in profiles],
    )
    return profiles
