"""SizeWatch - 健康检查路由."""

import time

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from sizewatch import db
from sizewatch.scheduler import get_scheduler
from sizewatch.utils.response_utils import jsonify_unified_success
from sizewatch.utils.structlog_config import log_warning

health_bp = Blueprint("health", __name__)

DATABASE_HEALTH_EXCEPTIONS: tuple[type[BaseException], ...] = (SQLAlchemyError,)


def _check_database() -> bool:
    try:
        db.session.execute(text("SELECT 1"))
    except DATABASE_HEALTH_EXCEPTIONS as exc:
        db.session.rollback()
        log_warning("数据库健康检查失败", module="health", exception=exc)
        return False
    return True


@health_bp.route("/api/basic")
def health_check():
    """基础健康检查.

    Returns:
        JSON 响应,包含服务状态、版本、审计库连通性与调度器状态.

    """
    database_ok = _check_database()
    task_scheduler = get_scheduler()
    return jsonify_unified_success(
        data={
            "status": "healthy" if database_ok else "degraded",
            "timestamp": time.time(),
            "version": current_app.config["APP_VERSION"],
            "database": database_ok,
            "scheduler_running": bool(task_scheduler and task_scheduler.running),
        },
        message="服务运行正常" if database_ok else "审计库不可用",
    )
