"""数据库容量监控周期编排.

一个周期依次处理每个服务器: 采集 → 白名单过滤 → 增长评估 → 告警推送 → 批次写入.
每个服务器是独立的失败边界,单个服务器失败不影响其它服务器.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from sizewatch import db
from sizewatch.constants import CycleStatus, ServerCycleStatus, SizeSegment, TriggerSource
from sizewatch.errors import ConnectionFailureError, PersistenceError
from sizewatch.services.alert_dispatcher import AlertDispatcher
from sizewatch.services.growth_evaluator import GrowthEvaluator
from sizewatch.services.size_collection.collector import SQLServerSizeCollector
from sizewatch.services.snapshot_persistence import SnapshotPersistence
from sizewatch.services.whitelist_filter import filter_measurements
from sizewatch.utils.structlog_config import get_sync_logger
from sizewatch.utils.time_utils import time_utils

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import tzinfo

    from sizewatch.services.server_profiles import ServerProfile
    from sizewatch.settings import Settings

MONITOR_SERVER_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionFailureError,
    PersistenceError,
    SQLAlchemyError,
)


@dataclass(slots=True)
class ServerCycleResult:
    """单个服务器在一次周期中的处理结果."""

    server_id: str
    server_alias: str
    status: str = ServerCycleStatus.SUCCESS
    collected: int = 0
    kept: int = 0
    saved: int = 0
    duplicates: int = 0
    alerts: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CycleReport:
    """一次采集周期的汇总."""

    trigger_source: str
    captured_date: date
    started_at: datetime
    finished_at: datetime | None = None
    servers: list[ServerCycleResult] = field(default_factory=list)

    @property
    def status(self) -> str:
        if all(result.status == ServerCycleStatus.SUCCESS for result in self.servers):
            return CycleStatus.COMPLETED
        return CycleStatus.COMPLETED_WITH_WARNINGS

    @property
    def alert_count(self) -> int:
        return sum(result.alerts for result in self.servers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger_source": self.trigger_source,
            "status": self.status,
            "captured_date": self.captured_date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "alert_count": self.alert_count,
            "servers": [result.to_dict() for result in self.servers],
        }


class MonitorCycleService:
    """执行一次完整的容量监控周期."""

    def __init__(
        self,
        profiles: Sequence[ServerProfile],
        *,
        collector: SQLServerSizeCollector,
        evaluator: GrowthEvaluator,
        dispatcher: AlertDispatcher,
        persistence: SnapshotPersistence | None = None,
        timezone: tzinfo | None = None,
    ) -> None:
        self.profiles = tuple(profiles)
        self.collector = collector
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.persistence = persistence or SnapshotPersistence()
        self.timezone = timezone
        self.logger = get_sync_logger()

    @classmethod
    def from_settings(cls, settings: Settings, profiles: Sequence[ServerProfile]) -> MonitorCycleService:
        """根据 Settings 组装采集器、评估器与告警推送."""
        segments = (SizeSegment.DATA, SizeSegment.LOG) if settings.monitor_log_segment_enabled else (SizeSegment.DATA,)
        return cls(
            profiles,
            collector=SQLServerSizeCollector.from_settings(settings),
            evaluator=GrowthEvaluator(threshold=settings.alert_growth_threshold, segments=segments),
            dispatcher=AlertDispatcher.from_settings(settings),
            timezone=settings.schedule_timezone,
        )

    def run_cycle(
        self,
        trigger_source: str = TriggerSource.SCHEDULED,
        *,
        captured_date: date | None = None,
    ) -> CycleReport:
        """依次处理全部服务器,需在 Flask 应用上下文中调用.

        Args:
            trigger_source: 触发来源(scheduled/manual).
            captured_date: 快照日期,默认取监控时区的今天.

        Returns:
            CycleReport: 周期汇总.

        """
        report = CycleReport(
            trigger_source=trigger_source,
            captured_date=captured_date or time_utils.today(self.timezone),
            started_at=time_utils.now(),
        )
        self.logger.info(
            "容量监控周期开始",
            module="monitor",
            trigger_source=trigger_source,
            captured_date=report.captured_date.isoformat(),
            server_count=len(self.profiles),
        )

        for profile in self.profiles:
            report.servers.append(self._process_server(profile, report.captured_date))

        report.finished_at = time_utils.now()
        self.logger.info(
            "容量监控周期结束",
            module="monitor",
            trigger_source=trigger_source,
            status=report.status,
            alert_count=report.alert_count,
            failed_servers=[r.server_alias for r in report.servers if r.status != ServerCycleStatus.SUCCESS],
            duration_seconds=(report.finished_at - report.started_at).total_seconds(),
        )
        return report

    def _process_server(self, profile: ServerProfile, captured_date: date) -> ServerCycleResult:
        server_alias = profile.display_name
        result = ServerCycleResult(server_id=profile.id, server_alias=server_alias)
        try:
            measurements = self.collector.collect(profile)
            result.collected = len(measurements)

            filtered = filter_measurements(profile, measurements).kept
            result.kept = len(filtered)

            evaluations = self.evaluator.evaluate(server_alias, filtered, captured_date)
            alerts = [evaluation.alert for evaluation in evaluations if evaluation.alert is not None]
            result.alerts = len(alerts)

            summary = self.dispatcher.dispatch(alerts)
            result.notifications_sent = summary.sent
            result.notifications_failed = summary.failed

            batch = self.persistence.persist_batch(server_alias, captured_date, evaluations)
            result.saved = batch.saved
            result.duplicates = len(batch.duplicates)
        except ConnectionFailureError as exc:
            result.status = ServerCycleStatus.COLLECTION_FAILED
            result.error = exc.message
            self.logger.warning(
                "服务器容量采集失败,本周期跳过",
                module="monitor",
                server_id=profile.id,
                server_alias=server_alias,
                error=exc.message,
                error_type=type(exc).__name__,
            )
        except MONITOR_SERVER_EXCEPTIONS as exc:
            if isinstance(exc, SQLAlchemyError):
                db.session.rollback()
            result.status = ServerCycleStatus.PERSISTENCE_FAILED
            result.error = str(exc)
            self.logger.error(
                "服务器快照处理失败,本周期跳过",
                module="monitor",
                server_id=profile.id,
                server_alias=server_alias,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return result
