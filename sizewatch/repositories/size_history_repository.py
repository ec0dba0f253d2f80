"""容量快照历史 Repository.

职责:
- 封装审计表的基线查询与追加写入
- 不做业务编排、不 commit(提交由持久化服务按服务器批次完成)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sizewatch import db
from sizewatch.errors import DuplicateSnapshotError
from sizewatch.models.size_snapshot import SizeSnapshot, quantize_size_mb


class SizeHistoryRepository:
    """容量快照历史 Repository."""

    @staticmethod
    def most_recent_before(server_alias: str, label: str, before: date) -> SizeSnapshot | None:
        """返回指定键在 `before` 之前(不含当天)日期最大的快照."""
        return (
            SizeSnapshot.query.filter(
                SizeSnapshot.server_alias == server_alias,
                SizeSnapshot.label == label,
                SizeSnapshot.captured_date < before,
            )
            .order_by(SizeSnapshot.captured_date.desc())
            .limit(1)
            .one_or_none()
        )

    @staticmethod
    def exists(server_alias: str, label: str, captured_date: date) -> bool:
        """判断当天快照是否已存在."""
        query = SizeSnapshot.query.filter_by(
            server_alias=server_alias,
            label=label,
            captured_date=captured_date,
        )
        return db.session.query(query.exists()).scalar()

    @classmethod
    def append(cls, server_alias: str, label: str, captured_date: date, size_mb: Decimal) -> SizeSnapshot:
        """追加一条快照到当前会话,容量按两位小数写入.

        Raises:
            DuplicateSnapshotError: 同一服务器、标签与日期已存在快照.

        """
        if cls.exists(server_alias, label, captured_date):
            raise DuplicateSnapshotError(
                f"{server_alias}/{label} 在 {captured_date.isoformat()} 已有快照",
                extra={
                    "server_alias": server_alias,
                    "label": label,
                    "captured_date": captured_date.isoformat(),
                },
            )
        snapshot = SizeSnapshot(
            server_alias=server_alias,
            label=label,
            captured_date=captured_date,
            size_mb=quantize_size_mb(size_mb),
        )
        db.session.add(snapshot)
        return snapshot

    @staticmethod
    def list_for_date(captured_date: date, server_alias: str | None = None) -> list[SizeSnapshot]:
        """查询某天的快照,可按服务器过滤."""
        query = SizeSnapshot.query.filter(SizeSnapshot.captured_date == captured_date)
        if server_alias is not None:
            query = query.filter(SizeSnapshot.server_alias == server_alias)
        return query.order_by(SizeSnapshot.server_alias, SizeSnapshot.label).all()
