# tests/unit/conftest.py
"""单元测试专用 fixtures.

提供隔离的环境变量、内存 SQLite 应用与常用的假对象.
"""

from decimal import Decimal

import pytest

from sizewatch import create_app, db
from sizewatch.services.server_profiles import ServerProfile
from sizewatch.services.size_collection.collector import Measurement
from sizewatch.settings import Settings


@pytest.fixture(autouse=True)
def _unit_test_env(monkeypatch, tmp_path):
    """为 unit tests 强制注入隔离环境变量.

    目标:
    - unit tests 不连接真实的 SQL Server 与告警网关
    - 避免开发者本机环境变量影响测试稳定性
    """
    monkeypatch.setenv("FLASK_ENV", "testing")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("ENABLE_SCHEDULER", "false")
    monkeypatch.setenv("MONITOR_TIMEZONE", "UTC")
    monkeypatch.setenv("MONITOR_CYCLE_LOCK_PATH", str(tmp_path / "monitor_cycle.lock"))
    for name in (
        "CONNECTION_STRINGS",
        "SERVERS_CONFIG_PATH",
        "ALERT_API_KEY",
        "ALERT_RECIPIENTS",
        "ALERT_GATEWAY_URL",
        "ALERT_GROWTH_THRESHOLD",
        "MONITOR_LOG_SEGMENT_ENABLED",
        "MONITOR_HOUR",
        "MONITOR_MINUTE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def app():
    """内存 SQLite 上的应用实例,已建好审计表."""
    flask_app = create_app(init_scheduler_on_start=False, settings=Settings.load())
    with flask_app.app_context():
        db.metadata.create_all(bind=db.engine)
        yield flask_app
        db.session.remove()
        db.metadata.drop_all(bind=db.engine)


@pytest.fixture
def make_profile():
    def _make(
        server_id: str = "Server2",
        *,
        alias: str | None = "Copernico",
        whitelist: set[str] | None = None,
        host: str = "10.0.0.2",
    ) -> ServerProfile:
        return ServerProfile(
            id=server_id,
            connection_ref=f"Server={host},1433;Database=master;User Id=monitor;Password=secret",
            alias=alias,
            whitelist=frozenset(whitelist) if whitelist is not None else None,
        )

    return _make


@pytest.fixture
def make_measurement():
    def _make(name: str, data_mb: str = "100.00", log_mb: str = "10.00") -> Measurement:
        return Measurement(database_name=name, data_mb=Decimal(data_mb), log_mb=Decimal(log_mb))

    return _make


class FakeResponse:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=None)


class FakeSession:
    """记录请求参数的 requests.Session 替身,可按收件人注入失败."""

    def __init__(self, *, failing_recipients=(), status_by_recipient=None) -> None:
        self.calls: list[dict] = []
        self.failing_recipients = set(failing_recipients)
        self.status_by_recipient = dict(status_by_recipient or {})

    def get(self, url, *, params, timeout):
        import requests

        self.calls.append({"url": url, "params": dict(params), "timeout": timeout})
        if params["phone"] in self.failing_recipients:
            raise requests.ConnectionError("gateway unreachable")
        return FakeResponse(self.status_by_recipient.get(params["phone"], 200))


@pytest.fixture
def fake_session():
    return FakeSession


class FakeCollector:
    """按服务器 id 返回预设采集结果或抛出预设异常."""

    def __init__(self, results: dict) -> None:
        self.results = results
        self.calls: list[str] = []

    def collect(self, profile):
        self.calls.append(profile.id)
        outcome = self.results[profile.id]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


@pytest.fixture
def fake_collector():
    return FakeCollector
