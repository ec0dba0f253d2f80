"""SizeWatch - 统一配置读取与校验.

目标:
- 将环境变量读取、默认值、校验集中到单一入口,避免散落在各模块中重复解析.
- `create_app(settings=...)` 只消费 Settings,不再直接读取环境变量.

说明:
- Settings 使用 `pydantic-settings` 的 `BaseSettings` 从环境变量与本地 `.env`(可选)读取配置.
- 生产环境默认更严格: 缺失数据库连接串会直接抛出 ValueError.
"""

from __future__ import annotations

import json
import logging
from datetime import tzinfo
from decimal import Decimal
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from tzlocal import get_localzone

from sizewatch.constants import DEFAULT_GROWTH_THRESHOLD

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent
DOTENV_PATH = PROJECT_ROOT / ".env"

DEFAULT_ENVIRONMENT = "development"
APP_VERSION = "1.0.0"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = "userdata/logs/sizewatch.log"
DEFAULT_LOG_MAX_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5

DEFAULT_DB_CONNECTION_TIMEOUT_SECONDS = 10
DEFAULT_SQLALCHEMY_POOL_RECYCLE_SECONDS = 300

DEFAULT_ENABLE_SCHEDULER = True
DEFAULT_MONITOR_HOUR = 6
DEFAULT_MONITOR_MINUTE = 0
DEFAULT_MISFIRE_GRACE_SECONDS = 300
DEFAULT_MONITOR_CYCLE_LOCK_PATH = str(PROJECT_ROOT / "userdata" / "monitor_cycle.lock")
DEFAULT_SERVERS_CONFIG_PATH = PACKAGE_ROOT / "config" / "servers.yaml"

DEFAULT_SQLSERVER_LOGIN_TIMEOUT_SECONDS = 20
DEFAULT_SQLSERVER_QUERY_TIMEOUT_SECONDS = 60

DEFAULT_ALERT_GATEWAY_URL = "https://api.callmebot.com/whatsapp.php"
DEFAULT_ALERT_TIMEOUT_SECONDS = 10

HOUR_OF_DAY_MIN = 0
HOUR_OF_DAY_MAX = 23
MINUTE_OF_HOUR_MIN = 0
MINUTE_OF_HOUR_MAX = 59


def _parse_csv(raw: str) -> tuple[str, ...]:
    parts = [item.strip() for item in raw.split(",")]
    return tuple(item for item in parts if item)


def _resolve_sqlite_fallback_url() -> str:
    db_path = PROJECT_ROOT / "userdata" / "sizewatch_dev.db"
    return f"sqlite:///{db_path.absolute()}"


class Settings(BaseSettings):
    """应用运行时设置集合."""

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
        # `ALERT_RECIPIENTS` 约定使用逗号分隔, `CONNECTION_STRINGS` 使用 JSON 对象,统一交由 validator 解析。
        enable_decoding=False,
    )

    environment: str = Field(default=DEFAULT_ENVIRONMENT, validation_alias="FLASK_ENV")
    debug: bool = Field(default=False, validation_alias="FLASK_DEBUG")

    app_name: str = Field(default="SizeWatch", validation_alias="APP_NAME")
    app_version: str = APP_VERSION

    database_url: str = Field(default="", validation_alias="DATABASE_URL")
    db_connection_timeout_seconds: int = Field(
        default=DEFAULT_DB_CONNECTION_TIMEOUT_SECONDS,
        validation_alias="DB_CONNECTION_TIMEOUT",
    )

    log_level: str = Field(default=DEFAULT_LOG_LEVEL, validation_alias="LOG_LEVEL")
    log_file: str = Field(default=DEFAULT_LOG_FILE, validation_alias="LOG_FILE")
    log_max_size_bytes: int = Field(default=DEFAULT_LOG_MAX_SIZE_BYTES, validation_alias="LOG_MAX_SIZE")
    log_backup_count: int = Field(default=DEFAULT_LOG_BACKUP_COUNT, validation_alias="LOG_BACKUP_COUNT")

    enable_scheduler: bool = Field(default=DEFAULT_ENABLE_SCHEDULER, validation_alias="ENABLE_SCHEDULER")
    server_software: str = Field(default="", validation_alias="SERVER_SOFTWARE")
    flask_run_from_cli: bool = Field(default=False, validation_alias="FLASK_RUN_FROM_CLI")
    werkzeug_run_main: bool = Field(default=False, validation_alias="WERKZEUG_RUN_MAIN")

    monitor_hour: int = Field(default=DEFAULT_MONITOR_HOUR, validation_alias="MONITOR_HOUR")
    monitor_minute: int = Field(default=DEFAULT_MONITOR_MINUTE, validation_alias="MONITOR_MINUTE")
    monitor_timezone: str = Field(default="", validation_alias="MONITOR_TIMEZONE")
    monitor_misfire_grace_seconds: int = Field(
        default=DEFAULT_MISFIRE_GRACE_SECONDS,
        validation_alias="MONITOR_MISFIRE_GRACE_TIME",
    )
    monitor_log_segment_enabled: bool = Field(default=False, validation_alias="MONITOR_LOG_SEGMENT_ENABLED")
    monitor_cycle_lock_path: str = Field(
        default=DEFAULT_MONITOR_CYCLE_LOCK_PATH,
        validation_alias="MONITOR_CYCLE_LOCK_PATH",
    )

    servers_config_path: str = Field(
        default=str(DEFAULT_SERVERS_CONFIG_PATH),
        validation_alias="SERVERS_CONFIG_PATH",
    )
    connection_strings: dict[str, str] = Field(default_factory=dict, validation_alias="CONNECTION_STRINGS")
    sqlserver_login_timeout_seconds: int = Field(
        default=DEFAULT_SQLSERVER_LOGIN_TIMEOUT_SECONDS,
        validation_alias="SQLSERVER_LOGIN_TIMEOUT",
    )
    sqlserver_query_timeout_seconds: int = Field(
        default=DEFAULT_SQLSERVER_QUERY_TIMEOUT_SECONDS,
        validation_alias="SQLSERVER_QUERY_TIMEOUT",
    )

    alert_growth_threshold: Decimal = Field(
        default=DEFAULT_GROWTH_THRESHOLD,
        validation_alias="ALERT_GROWTH_THRESHOLD",
    )
    alert_gateway_url: str = Field(default=DEFAULT_ALERT_GATEWAY_URL, validation_alias="ALERT_GATEWAY_URL")
    alert_api_key: str = Field(default="", validation_alias="ALERT_API_KEY")
    alert_recipients: tuple[str, ...] = Field(default=(), validation_alias="ALERT_RECIPIENTS")
    alert_timeout_seconds: int = Field(default=DEFAULT_ALERT_TIMEOUT_SECONDS, validation_alias="ALERT_TIMEOUT")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("alert_recipients", mode="before")
    @classmethod
    def _parse_csv_values(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return ()
            if raw.startswith("["):
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("must be a JSON array or a comma-separated string")
                return tuple(item for item in (str(v).strip() for v in parsed) if item)
            return _parse_csv(raw)
        if isinstance(value, (list, tuple, set)):
            return tuple(text for text in (str(item).strip() for item in value) if text)
        return value

    @field_validator("connection_strings", mode="before")
    @classmethod
    def _parse_connection_strings(cls, value: object) -> object:
        if value is None:
            return {}
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return {}
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError("CONNECTION_STRINGS must be a JSON object")
            return {str(key).strip(): str(conn).strip() for key, conn in parsed.items()}
        return value

    @property
    def is_production(self) -> bool:
        """当前是否为生产环境."""
        return self.environment.strip().lower() == "production"

    @property
    def schedule_timezone(self) -> tzinfo:
        """调度使用的时区,未配置时使用主机本地时区."""
        if self.monitor_timezone:
            return ZoneInfo(self.monitor_timezone)
        return get_localzone()

    @property
    def alerting_configured(self) -> bool:
        """告警网关密钥与收件人是否齐备."""
        return bool(self.alert_api_key and self.alert_recipients)

    @property
    def sqlalchemy_engine_options(self) -> dict[str, object]:
        """生成 SQLAlchemy Engine 配置选项."""
        if self.database_url.startswith("sqlite"):
            return {"pool_pre_ping": True, "connect_args": {"check_same_thread": False}}
        return {
            "pool_pre_ping": True,
            "pool_recycle": DEFAULT_SQLALCHEMY_POOL_RECYCLE_SECONDS,
            "pool_timeout": self.db_connection_timeout_seconds,
        }

    def to_flask_config(self) -> dict[str, object]:
        """转换为 Flask app.config 可写入的配置字典."""
        return {
            "ENV": self.environment,
            "DEBUG": self.debug,
            "TESTING": self.environment.strip().lower() in {"testing", "test"},
            "APP_NAME": self.app_name,
            "APP_VERSION": self.app_version,
            "SQLALCHEMY_DATABASE_URI": self.database_url,
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "SQLALCHEMY_ENGINE_OPTIONS": dict(self.sqlalchemy_engine_options),
            "LOG_LEVEL": self.log_level,
            "LOG_FILE": self.log_file,
            "LOG_MAX_SIZE": self.log_max_size_bytes,
            "LOG_BACKUP_COUNT": self.log_backup_count,
            "ENABLE_SCHEDULER": self.enable_scheduler,
            "MONITOR_HOUR": self.monitor_hour,
            "MONITOR_MINUTE": self.monitor_minute,
            "MONITOR_LOG_SEGMENT_ENABLED": self.monitor_log_segment_enabled,
            "ALERT_GROWTH_THRESHOLD": str(self.alert_growth_threshold),
        }

    @classmethod
    def load(cls) -> Settings:
        """从环境变量加载 Settings 并执行必要校验."""
        load_dotenv(dotenv_path=DOTENV_PATH if DOTENV_PATH.exists() else None, override=False)
        return cls()

    @model_validator(mode="after")
    def _apply_defaults_and_validate(self) -> Settings:
        environment_normalized = self.environment.strip().lower()
        self._resolve_debug(environment_normalized)
        self._ensure_database_url(environment_normalized)
        self._validate()
        return self

    def _resolve_debug(self, environment_normalized: str) -> None:
        if "debug" in self.model_fields_set:
            return
        object.__setattr__(self, "debug", environment_normalized == "development")

    def _ensure_database_url(self, environment_normalized: str) -> None:
        if self.database_url:
            return
        if environment_normalized == "production":
            raise ValueError("DATABASE_URL environment variable must be set in production")

        object.__setattr__(self, "database_url", _resolve_sqlite_fallback_url())
        if environment_normalized not in {"testing", "test"}:
            logger.warning("⚠️  未设置 DATABASE_URL, 非 production 环境将回退 SQLite")

    def _validate(self) -> None:
        """执行跨字段校验,统一抛出可读的 ValueError."""
        errors: list[str] = []
        checks: list[tuple[str, bool]] = [
            ("DB_CONNECTION_TIMEOUT 必须为正整数", self.db_connection_timeout_seconds <= 0),
            (
                f"MONITOR_HOUR 必须为 {HOUR_OF_DAY_MIN}-{HOUR_OF_DAY_MAX} 的整数",
                self.monitor_hour < HOUR_OF_DAY_MIN or self.monitor_hour > HOUR_OF_DAY_MAX,
            ),
            (
                f"MONITOR_MINUTE 必须为 {MINUTE_OF_HOUR_MIN}-{MINUTE_OF_HOUR_MAX} 的整数",
                self.monitor_minute < MINUTE_OF_HOUR_MIN or self.monitor_minute > MINUTE_OF_HOUR_MAX,
            ),
            ("MONITOR_MISFIRE_GRACE_TIME 必须为正整数(秒)", self.monitor_misfire_grace_seconds <= 0),
            ("SQLSERVER_LOGIN_TIMEOUT 必须为正整数(秒)", self.sqlserver_login_timeout_seconds <= 0),
            ("SQLSERVER_QUERY_TIMEOUT 必须为正整数(秒)", self.sqlserver_query_timeout_seconds <= 0),
            ("ALERT_GROWTH_THRESHOLD 不能为负数", self.alert_growth_threshold < 0),
            ("ALERT_TIMEOUT 必须为正整数(秒)", self.alert_timeout_seconds <= 0),
            ("LOG_LEVEL 取值非法", self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}),
        ]
        for message, condition in checks:
            if condition:
                errors.append(message)

        if self.monitor_timezone:
            try:
                ZoneInfo(self.monitor_timezone)
            except (KeyError, ValueError):
                errors.append(f"MONITOR_TIMEZONE 无法识别: {self.monitor_timezone}")

        if errors:
            joined = "; ".join(errors)
            raise ValueError(f"配置校验失败: {joined}")
