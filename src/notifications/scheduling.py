"""cron 时间窗口

外部调度器可能延迟触发, 因此窗口向前留出宽限期 (grace), 让迟到的一轮仍能覆盖
上次成功运行之后到期的任务; 是否到期只比较到 now, 不比较 window_end。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

__all__ = ["CronWindow", "DEFAULT_GRACE_MINUTES", "DEFAULT_LOOKAHEAD_MINUTES", "build_cron_window", "is_job_due"]

DEFAULT_GRACE_MINUTES = 120
DEFAULT_LOOKAHEAD_MINUTES = 17


@dataclass(frozen=True)
class CronWindow:
    window_start: datetime
    window_end: datetime


def build_cron_window(
    now: datetime,
    grace_minutes: int = DEFAULT_GRACE_MINUTES,
    lookahead_minutes: int = DEFAULT_LOOKAHEAD_MINUTES,
) -> CronWindow:
    grace_minutes = max(0, grace_minutes)
    lookahead_minutes = max(0, lookahead_minutes)
    return CronWindow(
        window_start=now - timedelta(minutes=grace_minutes),
        window_end=now + timedelta(minutes=lookahead_minutes),
    )


def is_job_due(now: datetime, window_start: datetime, job_time: datetime) -> bool:
    return window_start <= job_time <= now
