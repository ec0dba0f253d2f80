"""容量增长告警推送.

通过 HTTP 消息网关(默认 CallMeBot WhatsApp 接口)向每个收件人发送告警,
尽力而为: 单个收件人失败只记录日志,不影响其它收件人与快照写入,同一周期内不重试.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

import requests

from sizewatch.constants import DEFAULT_GROWTH_THRESHOLD
from sizewatch.errors import NotificationError
from sizewatch.models.size_snapshot import quantize_size_mb
from sizewatch.utils.structlog_config import get_alert_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sizewatch.services.growth_evaluator import GrowthAlert
    from sizewatch.settings import Settings

NOTIFICATION_EXCEPTIONS: tuple[type[BaseException], ...] = (
    requests.RequestException,
    NotificationError,
)


@dataclass(frozen=True, slots=True)
class DispatchSummary:
    """一次推送的统计结果."""

    sent: int = 0
    failed: int = 0
    skipped: bool = False


def format_threshold_percent(threshold: Decimal) -> str:
    """将 0.03 渲染为 `3`,0.025 渲染为 `2.5`."""
    return format((threshold * 100).normalize(), "f")


def format_alert_message(alert: GrowthAlert, threshold: Decimal = DEFAULT_GROWTH_THRESHOLD) -> str:
    """生成告警文本.

    Example:
        >>> format_alert_message(GrowthAlert("Copernico", "SAC_Data", Decimal("1000"), Decimal("1035.01")))
        'Alert! SAC_Data on Copernico grew from 1000.00MB to 1035.01MB (>3%).'

    """
    baseline_mb = quantize_size_mb(alert.baseline_mb)
    new_mb = quantize_size_mb(alert.new_mb)
    return (
        f"Alert! {alert.label} on {alert.server_alias} grew from "
        f"{baseline_mb}MB to {new_mb}MB (>{format_threshold_percent(threshold)}%)."
    )


class AlertDispatcher:
    """告警网关客户端."""

    def __init__(
        self,
        *,
        gateway_url: str,
        api_key: str,
        recipients: Sequence[str],
        timeout: float = 10,
        threshold: Decimal = DEFAULT_GROWTH_THRESHOLD,
        session: requests.Session | None = None,
    ) -> None:
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.recipients = tuple(recipients)
        self.timeout = timeout
        self.threshold = threshold
        self.session = session or requests.Session()
        self.logger = get_alert_logger()

    @classmethod
    def from_settings(cls, settings: Settings, *, session: requests.Session | None = None) -> AlertDispatcher:
        return cls(
            gateway_url=settings.alert_gateway_url,
            api_key=settings.alert_api_key,
            recipients=settings.alert_recipients,
            timeout=settings.alert_timeout_seconds,
            threshold=settings.alert_growth_threshold,
            session=session,
        )

    @property
    def configured(self) -> bool:
        return bool(self.gateway_url and self.api_key and self.recipients)

    def dispatch(self, alerts: Sequence[GrowthAlert]) -> DispatchSummary:
        """向全部收件人推送告警.

        Args:
            alerts: 本次需要推送的增长告警.

        Returns:
            DispatchSummary: 成功与失败的推送次数.

        """
        if not alerts:
            return DispatchSummary()
        if not self.configured:
            self.logger.warning(
                "告警网关未配置,跳过推送",
                module="alert",
                alert_count=len(alerts),
                labels=[alert.label for alert in alerts],
            )
            return DispatchSummary(skipped=True)

        sent = 0
        failed = 0
        for alert in alerts:
            message = format_alert_message(alert, self.threshold)
            for recipient in self.recipients:
                try:
                    self.send(recipient, message)
                except NOTIFICATION_EXCEPTIONS as exc:
                    failed += 1
                    self.logger.warning(
                        "告警推送失败",
                        module="alert",
                        recipient=recipient,
                        server_alias=alert.server_alias,
                        label=alert.label,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                else:
                    sent += 1
        self.logger.info("告警推送完成", module="alert", alert_count=len(alerts), sent=sent, failed=failed)
        return DispatchSummary(sent=sent, failed=failed)

    def send(self, recipient: str, message: str) -> None:
        """发送单条消息.

        Raises:
            NotificationError: 网关返回非 2xx 状态.
            requests.RequestException: 网络错误或超时.

        """
        response = self.session.get(
            self.gateway_url,
            params={"phone": recipient, "text": message, "apikey": self.api_key},
            timeout=self.timeout,
        )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise NotificationError(
                f"告警网关返回 {response.status_code}",
                extra={"recipient": recipient, "status_code": response.status_code},
            ) from exc
