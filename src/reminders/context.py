"""提醒的上下文规则 (ContextSettings) 与判定

# 规则
1. 时间窗口 (time_window): 只在指定星期几、指定小时区间 [start_hour, end_hour) 内发送;
2. 日历忙碌 (calendar_busy): 用户日历忙碌时自动顺延 snooze_minutes 分钟;

# 判定结果
SendNow / SkipForNow / AutoSnooze 三选一, 调用方需要逐一处理。
SkipForNow 不修改任何数据, 该 occurrence 下一轮 cron 会再次被判定。

注意: 判定只读取 now 自身的小时与星期, 调用方需要先把 now 转换到用户 (或提醒) 所在时区。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, List, Literal, Optional, Union

__all__ = [
    "DAY_NAMES", "TimeWindowContext", "CalendarBusyContext", "ContextSettings",
    "get_default_context_settings", "parse_context_settings", "is_default_context_settings",
    "SendNow", "SkipForNow", "AutoSnooze", "ContextDecision", "evaluate_reminder_context",
]

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 20
DEFAULT_SNOOZE_MINUTES = 15
MAX_SNOOZE_MINUTES = 1440


@dataclass(frozen=True)
class TimeWindowContext:
    enabled: bool = False
    start_hour: int = DEFAULT_START_HOUR
    end_hour: int = DEFAULT_END_HOUR
    days_of_week: tuple[str, ...] = ()  # 为空表示每天


@dataclass(frozen=True)
class CalendarBusyContext:
    enabled: bool = False
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES


@dataclass(frozen=True)
class ContextSettings:
    time_window: TimeWindowContext = field(default_factory=TimeWindowContext)
    calendar_busy: CalendarBusyContext = field(default_factory=CalendarBusyContext)
    category: Optional[str] = None


def get_default_context_settings() -> ContextSettings:
    return ContextSettings()


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _sanitize_hour(value: Any, default: int) -> int:
    if value is None:
        return default
    num = _to_number(value)
    if num is None or num != num or num < 0:  # NaN
        return 0
    if num > 23:
        return 23
    return int(num)


def _sanitize_minutes(value: Any, default: int) -> int:
    if value is None:
        return default
    num = _to_number(value)
    if num is None or num != num or num <= 0:
        return DEFAULT_SNOOZE_MINUTES
    if num > MAX_SNOOZE_MINUTES:
        return MAX_SNOOZE_MINUTES
    return int(num)


def _sanitize_days(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    if not isinstance(value, list):
        return ()
    days: List[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        day = item.strip().lower()
        if day in DAY_NAMES and day not in days:
            days.append(day)
    return tuple(days)


def _load_raw(raw: Any) -> Any:
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            return None
    return raw


def _section(raw: dict, *keys: str) -> dict:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _pick(section: dict, *keys: str) -> Any:
    for key in keys:
        if key in section:
            return section[key]
    return None


def parse_context_settings(raw: Any, defaults: ContextSettings | None = None) -> ContextSettings:
    """从不可信的原始数据解析 ContextSettings, 任何输入都不会抛异常

    raw 可以是 dict 或 JSON 字符串, 键名同时兼容 camelCase 与 snake_case;
    defaults 通常来自用户级 context_defaults, 未在 raw 中出现的字段沿用它。
    """
    base = defaults or get_default_context_settings()
    data = _load_raw(raw)
    if not isinstance(data, dict):
        return base

    category = data.get("category")
    if not isinstance(category, str):
        category = base.category

    tw = _section(data, "timeWindow", "time_window")
    cb = _section(data, "calendarBusy", "calendar_busy")
    base_tw = base.time_window
    base_cb = base.calendar_busy

    enabled_tw = _pick(tw, "enabled")
    time_window = TimeWindowContext(
        enabled=base_tw.enabled if enabled_tw is None else bool(enabled_tw),
        start_hour=_sanitize_hour(_pick(tw, "startHour", "start_hour"), base_tw.start_hour),
        end_hour=_sanitize_hour(_pick(tw, "endHour", "end_hour"), base_tw.end_hour),
        days_of_week=_sanitize_days(_pick(tw, "daysOfWeek", "days_of_week"), base_tw.days_of_week),
    )

    enabled_cb = _pick(cb, "enabled")
    calendar_busy = CalendarBusyContext(
        enabled=base_cb.enabled if enabled_cb is None else bool(enabled_cb),
        snooze_minutes=_sanitize_minutes(_pick(cb, "snoozeMinutes", "snooze_minutes"), base_cb.snooze_minutes),
    )

    return replace(base, time_window=time_window, calendar_busy=calendar_busy, category=category)


def is_default_context_settings(settings: ContextSettings) -> bool:
    return not settings.time_window.enabled and not settings.calendar_busy.enabled


# ----------------- 判定结果 ----------------
@dataclass(frozen=True)
class SendNow:
    type: Literal["send_now"] = "send_now"


@dataclass(frozen=True)
class SkipForNow:
    reason: Literal["outside_day_window", "outside_time_window"]
    type: Literal["skip_for_now"] = "skip_for_now"


@dataclass(frozen=True)
class AutoSnooze:
    new_scheduled_at: datetime
    reason: Literal["calendar_busy"] = "calendar_busy"
    type: Literal["auto_snooze"] = "auto_snooze"


ContextDecision = Union[SendNow, SkipForNow, AutoSnooze]


def evaluate_reminder_context(
    now: datetime,
    reminder_due_at: datetime,
    settings: ContextSettings,
    is_calendar_busy: bool,
) -> ContextDecision:
    """按顺序检查时间窗口与日历忙碌, 返回三种判定之一

    reminder_due_at 目前不参与判定, 保留给按到期时间调整规则的场景。
    """
    time_window = settings.time_window
    if time_window.enabled:
        day = DAY_NAMES[now.weekday()]
        if time_window.days_of_week and day not in time_window.days_of_week:
            return SkipForNow(reason="outside_day_window")
        if now.hour < time_window.start_hour or now.hour >= time_window.end_hour:
            return SkipForNow(reason="outside_time_window")

    calendar_busy = settings.calendar_busy
    if calendar_busy.enabled and is_calendar_busy:
        return AutoSnooze(new_scheduled_at=now + timedelta(minutes=calendar_busy.snooze_minutes))

    return SendNow()
