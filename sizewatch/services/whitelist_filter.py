"""按服务器白名单过滤容量采集结果."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sizewatch.utils.structlog_config import get_sync_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sizewatch.services.server_profiles import ServerProfile
    from sizewatch.services.size_collection.collector import Measurement


@dataclass(frozen=True, slots=True)
class WhitelistFilterResult:
    """过滤结果.

    Attributes:
        kept: 白名单内(或未配置白名单时全部)的采集结果,保持原始顺序.
        dropped: 被排除的数据库名称.
        missing: 白名单中声明但服务器上不存在的数据库名称.

    """

    kept: list[Measurement]
    dropped: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def filter_measurements(profile: ServerProfile, measurements: Sequence[Measurement]) -> WhitelistFilterResult:
    """按白名单过滤,名称比较不区分大小写.

    未配置白名单的服务器原样放行全部采集结果.
    """
    if profile.whitelist is None:
        return WhitelistFilterResult(kept=list(measurements))

    allowed = {name.casefold(): name for name in profile.whitelist}
    kept: list[Measurement] = []
    dropped: list[str] = []
    seen: set[str] = set()
    for measurement in measurements:
        key = measurement.database_name.casefold()
        if key in allowed:
            kept.append(measurement)
            seen.add(key)
        else:
            dropped.append(measurement.database_name)

    missing = sorted(original for key, original in allowed.items() if key not in seen)
    if missing:
        get_sync_logger().warning(
            "白名单中的数据库在服务器上不存在",
            module="whitelist",
            server_id=profile.id,
            server_alias=profile.display_name,
            missing=missing,
        )
    return WhitelistFilterResult(kept=kept, dropped=dropped, missing=missing)
