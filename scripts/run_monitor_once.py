#!/usr/bin/env python3
"""手动执行一次数据库容量监控周期.

与 `POST /api/monitor/run?wait=true` 等价: 同步执行并以 JSON 输出周期报告.
不启动定时调度器.

用法:
    python scripts/run_monitor_once.py
    python scripts/run_monitor_once.py --date 2026-03-01
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from pathlib import Path

# 添加项目根目录到Python路径
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sizewatch import create_app  # noqa: E402
from sizewatch.constants import CycleStatus, TriggerStatus  # noqa: E402
from sizewatch.services.monitor_runner import get_monitor_runner  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="执行一次数据库容量监控周期")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="快照日期(YYYY-MM-DD),默认取监控时区的今天",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    app = create_app(init_scheduler_on_start=False)
    runner = get_monitor_runner(app)

    # 与 HTTP 触发和定时任务共享跨进程周期锁
    result = runner.trigger_manual(wait=True, captured_date=args.date)
    if result.status == TriggerStatus.ALREADY_RUNNING or result.report is None:
        print("已有采集周期在运行", file=sys.stderr)
        return 1
    report = result.report

    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0 if report.status == CycleStatus.COMPLETED else 2


if __name__ == "__main__":
    sys.exit(main())
