"""容量增长评估.

将当天采集的容量与该服务器、标签在今天之前最近的一次快照(基线)比较,
增长超过阈值时生成告警.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from sizewatch.constants import DEFAULT_GROWTH_THRESHOLD, SizeSegment
from sizewatch.models.size_snapshot import quantize_size_mb
from sizewatch.repositories.size_history_repository import SizeHistoryRepository
from sizewatch.utils.structlog_config import get_sync_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import date

    from sizewatch.models.size_snapshot import SizeSnapshot
    from sizewatch.services.size_collection.collector import Measurement

    BaselineLookup = Callable[[str, str, date], SizeSnapshot | None]


@dataclass(frozen=True, slots=True)
class GrowthAlert:
    """超过阈值的增长事件."""

    server_alias: str
    label: str
    baseline_mb: Decimal
    new_mb: Decimal


@dataclass(frozen=True, slots=True)
class SegmentEvaluation:
    """单个标签的评估结果,无论是否告警都需要写入当天快照."""

    label: str
    new_mb: Decimal
    baseline_mb: Decimal | None = None
    alert: GrowthAlert | None = None


def exceeds_threshold(baseline_mb: Decimal, new_mb: Decimal, threshold: Decimal) -> bool:
    """增长是否严格超过阈值.

    以乘法比较,基线为 0 时不会出现除零.

    Example:
        >>> exceeds_threshold(Decimal("1000.00"), Decimal("1035.01"), Decimal("0.03"))
        True
        >>> exceeds_threshold(Decimal("1000.00"), Decimal("1030.00"), Decimal("0.03"))
        False

    """
    return new_mb > baseline_mb * (Decimal(1) + threshold)


def segment_size(measurement: Measurement, segment: SizeSegment) -> Decimal:
    """按分段取出对应的容量."""
    if segment is SizeSegment.LOG:
        return measurement.log_mb
    return measurement.data_mb


class GrowthEvaluator:
    """按分段评估容量增长.

    Attributes:
        threshold: 增长阈值(0.03 表示 3%).
        segments: 需要跟踪的分段,默认只跟踪数据文件.

    """

    def __init__(
        self,
        *,
        threshold: Decimal = DEFAULT_GROWTH_THRESHOLD,
        segments: Sequence[SizeSegment] = (SizeSegment.DATA,),
        baseline_lookup: BaselineLookup | None = None,
    ) -> None:
        self.threshold = threshold
        self.segments = tuple(segments)
        self._baseline_lookup = baseline_lookup or SizeHistoryRepository.most_recent_before
        self.logger = get_sync_logger()

    def evaluate(
        self,
        server_alias: str,
        measurements: Sequence[Measurement],
        captured_date: date,
    ) -> list[SegmentEvaluation]:
        """评估一个服务器的全部采集结果.

        Args:
            server_alias: 服务器显示名称.
            measurements: 已经过白名单过滤的采集结果.
            captured_date: 当天日期,基线只取严格早于该日期的快照.

        Returns:
            list[SegmentEvaluation]: 每个数据库每个分段一条.

        """
        evaluations: list[SegmentEvaluation] = []
        for measurement in measurements:
            for segment in self.segments:
                label = segment.label_for(measurement.database_name)
                evaluations.append(
                    self._evaluate_one(server_alias, label, segment_size(measurement, segment), captured_date),
                )
        return evaluations

    def _evaluate_one(self, server_alias: str, label: str, new_mb: Decimal, captured_date: date) -> SegmentEvaluation:
        baseline = self._baseline_lookup(server_alias, label, captured_date)
        if baseline is None:
            self.logger.debug("无历史基线,跳过增长评估", module="growth", server_alias=server_alias, label=label)
            return SegmentEvaluation(label=label, new_mb=new_mb)

        baseline_mb = quantize_size_mb(baseline.size_mb)
        alert = None
        if exceeds_threshold(baseline_mb, new_mb, self.threshold):
            alert = GrowthAlert(server_alias=server_alias, label=label, baseline_mb=baseline_mb, new_mb=new_mb)
            self.logger.warning(
                "数据库容量增长超过阈值",
                module="growth",
                server_alias=server_alias,
                label=label,
                baseline_mb=str(baseline_mb),
                new_mb=str(new_mb),
                baseline_date=baseline.captured_date.isoformat(),
                threshold=str(self.threshold),
            )
        return SegmentEvaluation(label=label, new_mb=new_mb, baseline_mb=baseline_mb, alert=alert)
