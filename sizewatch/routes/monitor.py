"""SizeWatch - 容量监控手动触发与状态路由."""

from flask import Blueprint, current_app, request

from sizewatch.constants import HttpStatus, TriggerStatus
from sizewatch.errors import CycleAlreadyRunningError
from sizewatch.scheduler import get_scheduler
from sizewatch.services.monitor_runner import get_monitor_runner
from sizewatch.utils.response_utils import jsonify_unified_error, jsonify_unified_success
from sizewatch.utils.structlog_config import log_info

monitor_bp = Blueprint("monitor", __name__)

TRUTHY_VALUES = {"1", "true", "yes", "on"}


@monitor_bp.route("/run", methods=["POST"])
def run_monitor():
    """手动触发一次容量监控周期.

    默认在后台执行并立即返回 202;`?wait=true` 时同步执行并返回周期报告.
    已有周期运行时返回 409.
    """
    wait = request.args.get("wait", "").strip().lower() in TRUTHY_VALUES
    runner = get_monitor_runner(current_app)
    result = runner.trigger_manual(wait=wait)

    if result.status == TriggerStatus.ALREADY_RUNNING:
        return jsonify_unified_error(CycleAlreadyRunningError(), extra={"status": result.status})

    log_info("手动触发容量监控", module="monitor", status=result.status, wait=wait)
    if result.status == TriggerStatus.COMPLETED and result.report is not None:
        return jsonify_unified_success(
            data={"status": result.status, "report": result.report.to_dict()},
            message="容量监控周期已完成",
        )
    return jsonify_unified_success(
        data={"status": result.status, "thread_name": result.thread_name},
        message="容量监控周期已在后台启动",
        status=HttpStatus.ACCEPTED,
    )


@monitor_bp.route("/status")
def monitor_status():
    """返回运行状态、下一次定时执行时间与最近一次周期报告."""
    runner = get_monitor_runner(current_app)
    task_scheduler = get_scheduler()
    next_run = task_scheduler.next_run_time() if task_scheduler is not None else None
    last_report = runner.last_report
    return jsonify_unified_success(
        data={
            "running": runner.is_running,
            "scheduler_running": bool(task_scheduler and task_scheduler.running),
            "next_run_time": next_run.isoformat() if next_run else None,
            "last_report": last_report.to_dict() if last_report else None,
        },
    )
