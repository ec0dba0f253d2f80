"""容量快照批次持久化.

同一服务器在一个采集周期内的快照作为一个工作单元提交:
重复键只拒绝该条记录,其它数据库异常回滚整批.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from sizewatch import db
from sizewatch.errors import DuplicateSnapshotError, PersistenceError
from sizewatch.repositories.size_history_repository import SizeHistoryRepository
from sizewatch.utils.structlog_config import get_db_logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from sizewatch.services.growth_evaluator import SegmentEvaluation


@dataclass(frozen=True, slots=True)
class PersistBatchResult:
    """批次写入结果."""

    saved: int = 0
    duplicates: list[str] = field(default_factory=list)


class SnapshotPersistence:
    """负责把评估结果写入审计表."""

    def __init__(self) -> None:
        self.logger = get_db_logger()

    def persist_batch(
        self,
        server_alias: str,
        captured_date: date,
        evaluations: Iterable[SegmentEvaluation],
    ) -> PersistBatchResult:
        """追加并提交一个服务器的全部快照.

        Args:
            server_alias: 服务器显示名称.
            captured_date: 快照日期.
            evaluations: 评估结果,每条对应一个标签.

        Returns:
            PersistBatchResult: 写入条数与被拒绝的重复标签.

        Raises:
            PersistenceError: 写入或提交失败,整批已回滚.

        """
        saved = 0
        duplicates: list[str] = []
        try:
            for evaluation in evaluations:
                try:
                    SizeHistoryRepository.append(server_alias, evaluation.label, captured_date, evaluation.new_mb)
                except DuplicateSnapshotError as exc:
                    duplicates.append(evaluation.label)
                    self.logger.warning(
                        "快照已存在,拒绝重复写入",
                        module="persistence",
                        server_alias=server_alias,
                        label=evaluation.label,
                        captured_date=captured_date.isoformat(),
                        error=exc.message,
                    )
                    continue
                saved += 1
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.logger.error(
                "快照批次写入失败,已回滚",
                module="persistence",
                server_alias=server_alias,
                captured_date=captured_date.isoformat(),
                error=str(exc),
                exc_info=True,
            )
            raise PersistenceError(
                f"{server_alias} 的快照批次写入失败",
                extra={"server_alias": server_alias, "captured_date": captured_date.isoformat()},
            ) from exc

        self.logger.info(
            "快照批次写入成功",
            module="persistence",
            server_alias=server_alias,
            captured_date=captured_date.isoformat(),
            saved_count=saved,
            duplicate_count=len(duplicates),
        )
        return PersistBatchResult(saved=saved, duplicates=duplicates)
