"""SizeWatch - Flask 应用初始化.

每日采集 SQL Server 数据库容量快照,并在容量增长超过阈值时推送告警.
"""

import atexit
import logging
from importlib import import_module
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Blueprint, Flask, jsonify
from flask.typing import ResponseReturnValue
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from sizewatch.settings import Settings
from sizewatch.utils.response_utils import unified_error_response
from sizewatch.utils.structlog_config import configure_structlog, get_system_logger

# 初始化扩展
db = SQLAlchemy()
migrate = Migrate()


def create_app(
    *,
    init_scheduler_on_start: bool = True,
    settings: Settings | None = None,
) -> Flask:
    """创建Flask应用实例.

    Args:
        init_scheduler_on_start: 是否在创建应用时初始化调度器
        settings: 可选的配置对象,用于测试或多环境启动.

    Returns:
        Flask: Flask应用实例

    Raises:
        ConfigurationError: 服务器清单无法加载.

    """
    resolved_settings = settings or Settings.load()
    app = Flask(__name__)

    # 配置应用
    configure_app(app, resolved_settings)

    # 初始化扩展
    db.init_app(app)
    migrate.init_app(app, db)

    # 注册蓝图
    configure_blueprints(app)

    # 配置日志
    configure_logging(app)

    # 配置统一日志系统
    configure_structlog(app)

    # 设置全局日志级别
    log_level_name = str(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger().setLevel(getattr(logging, log_level_name, logging.INFO))

    # 注册全局错误处理器
    @app.errorhandler(Exception)
    def handle_global_exception(error: Exception) -> ResponseReturnValue:
        """全局错误处理."""
        payload, status_code = unified_error_response(error)
        return jsonify(payload), status_code

    runner = configure_monitor(app, resolved_settings)

    if init_scheduler_on_start:
        from sizewatch.scheduler import init_scheduler

        init_scheduler(resolved_settings, runner.run_scheduled)

    return app


def configure_app(app: Flask, settings: Settings) -> None:
    """写入 Settings 提供的配置.

    Args:
        app: Flask 应用实例.
        settings: 统一配置对象,包含环境变量解析、默认值与校验结果.

    """
    app.config.from_mapping(settings.to_flask_config())
    app.config.setdefault("APPLICATION_ROOT", "/")
    app.extensions["sizewatch.settings"] = settings


def configure_monitor(app: Flask, settings: Settings):
    """加载服务器清单并注册采集周期执行器.

    Args:
        app: Flask 应用实例.
        settings: 统一配置对象.

    Returns:
        MonitorRunner: 注册到 `app.extensions` 的执行器.

    """
    from sizewatch.services.monitor_cycle_service import MonitorCycleService
    from sizewatch.services.monitor_runner import MONITOR_RUNNER_EXTENSION_KEY, MonitorRunner
    from sizewatch.services.server_profiles import load_server_profiles

    profiles = load_server_profiles(settings)
    lock_path = Path(settings.monitor_cycle_lock_path) if settings.monitor_cycle_lock_path else None
    runner = MonitorRunner(app, MonitorCycleService.from_settings(settings, profiles), lock_path=lock_path)
    app.extensions[MONITOR_RUNNER_EXTENSION_KEY] = runner
    atexit.register(runner.shutdown)
    return runner


def configure_blueprints(app: Flask) -> None:
    """注册所有蓝图以暴露路由.

    Args:
        app: Flask 应用实例.

    """
    blueprint_specs: list[tuple[str, str, str | None]] = [
        ("sizewatch.routes.health", "health_bp", "/health"),
        ("sizewatch.routes.monitor", "monitor_bp", "/api/monitor"),
    ]

    for module_path, attr_name, prefix in blueprint_specs:
        blueprint: Blueprint = getattr(import_module(module_path), attr_name)
        if prefix:
            app.register_blueprint(blueprint, url_prefix=prefix)
        else:
            app.register_blueprint(blueprint)


def configure_logging(app: Flask) -> None:
    """配置日志系统与文件处理器.

    Args:
        app: Flask 应用实例.

    """
    if not app.debug and not app.testing:
        log_path = Path(app.config["LOG_FILE"])
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=app.config["LOG_MAX_SIZE"],
            backupCount=app.config["LOG_BACKUP_COUNT"],
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"),
        )
        file_handler.setLevel(getattr(logging, app.config["LOG_LEVEL"]))
        app.logger.addHandler(file_handler)

        app.logger.setLevel(getattr(logging, app.config["LOG_LEVEL"]))
        get_system_logger().info("SizeWatch 应用启动", environment=app.config["ENV"])


from sizewatch import models  # noqa: F401, E402
