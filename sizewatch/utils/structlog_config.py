"""SizeWatch 的结构化日志配置与辅助函数."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any, cast

import structlog
from flask import Flask, current_app, has_request_context, request

from sizewatch.settings import APP_VERSION

if TYPE_CHECKING:
    from structlog.typing import BindableLogger, EventDict, Processor


class StructlogConfig:
    """structlog 配置核心类.

    负责配置处理器链与日志工厂,可多次调用但只会配置一次.

    Attributes:
        configured: 是否已配置标志.

    Example:
        >>> config = StructlogConfig()
        >>> config.configure(app)
        >>> logger = get_logger('my_module')

    """

    def __init__(self) -> None:
        self.configured = False

    def configure(self, app: Flask | None = None) -> None:
        """初始化 structlog 处理器(幂等).

        Args:
            app: Flask 应用实例,可选.

        Returns:
            None.

        """
        if not self.configured:
            processors = [
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                self._add_request_context,
                self._add_global_context,
                self._get_renderer(),
            ]
            structlog.configure(
                processors=cast("list[Processor]", processors),
                context_class=dict,
                logger_factory=structlog.stdlib.LoggerFactory(),
                wrapper_class=structlog.stdlib.BoundLogger,
                cache_logger_on_first_use=True,
            )
            self.configured = True

        if app is not None:
            app.extensions["structlog"] = self

    @staticmethod
    def _add_request_context(
        _logger: BindableLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        """在请求上下文中附加请求路径与方法."""
        if has_request_context():
            event_dict["path"] = request.path
            event_dict["method"] = request.method
        return event_dict

    @staticmethod
    def _add_global_context(
        _logger: BindableLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        """附加应用名称、版本等全局上下文.

        Args:
            _logger: 当前 logger.
            _method_name: 日志方法.
            event_dict: 事件字典.

        Returns:
            更新后的事件字典.

        """
        try:
            event_dict["app_name"] = current_app.config["APP_NAME"]
            event_dict["app_version"] = current_app.config["APP_VERSION"]
        except (RuntimeError, KeyError):
            event_dict["app_name"] = "SizeWatch"
            event_dict["app_version"] = APP_VERSION

        event_dict["logger_name"] = getattr(_logger, "name", "unknown")
        return event_dict

    @staticmethod
    def _get_renderer() -> Processor:
        """终端输出使用彩色控制台渲染,否则输出 JSON."""
        if sys.stdout.isatty():
            return structlog.dev.ConsoleRenderer(colors=True)
        return structlog.processors.JSONRenderer(ensure_ascii=False)


structlog_config = StructlogConfig()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器.

    Args:
        name: 日志记录器名称,通常使用模块名.

    Returns:
        绑定的 structlog 日志记录器实例.

    Example:
        >>> logger = get_logger('my_module')
        >>> logger.info('操作成功', server_alias='Copernico')

    """
    structlog_config.configure()
    return structlog.get_logger(name)


def configure_structlog(app: Flask) -> None:
    """配置 structlog 并注册 Flask 钩子.

    Args:
        app: Flask 应用实例.

    Returns:
        None.

    """
    structlog_config.configure(app)

    @app.teardown_appcontext
    def log_teardown_error(exception: BaseException | None) -> None:
        if exception:
            get_logger("app").error("应用请求处理异常", module="system", exception=str(exception))


def log_info(message: str, module: str = "app", **kwargs: Any) -> None:
    """记录信息级别日志."""
    get_logger("app").info(message, module=module, **kwargs)


def log_warning(message: str, module: str = "app", exception: Exception | None = None, **kwargs: Any) -> None:
    """记录警告级别日志,可附带异常文本."""
    logger = get_logger("app")
    if exception:
        logger.warning(message, module=module, exception=str(exception), **kwargs)
    else:
        logger.warning(message, module=module, **kwargs)


def get_system_logger() -> structlog.stdlib.BoundLogger:
    """返回系统级 logger."""
    return get_logger("system")


def get_db_logger() -> structlog.stdlib.BoundLogger:
    """返回数据库操作 logger."""
    return get_logger("database")


def get_sync_logger() -> structlog.stdlib.BoundLogger:
    """返回容量采集 logger."""
    return get_logger("sync")


def get_task_logger() -> structlog.stdlib.BoundLogger:
    """返回后台任务 logger."""
    return get_logger("task")


def get_alert_logger() -> structlog.stdlib.BoundLogger:
    """返回告警通知 logger."""
    return get_logger("alert")


__all__ = [
    "configure_structlog",
    "get_alert_logger",
    "get_db_logger",
    "get_logger",
    "get_sync_logger",
    "get_system_logger",
    "get_task_logger",
    "log_info",
    "log_warning",
]
