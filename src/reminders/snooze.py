"""智能延后 (Smart Snooze) 候选项

根据当前时间、提醒分类与到期时间, 生成一组"延后到何时"的候选项, 供手动延后时选择。
now 与 due_at 需要是用户本地时区的 aware datetime, 否则"今晚 20:00"之类的目标会落在错误的时区。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Literal, Optional, Union

__all__ = [
    "SnoozeOptionId", "SnoozeOption", "CUSTOM_TARGET", "MAX_SNOOZE_OPTIONS",
    "MED_KEYWORDS", "is_meds_category", "infer_reminder_category", "get_smart_snooze_options",
]

SnoozeOptionId = Literal[
    "later-today",
    "tomorrow",
    "this-weekend",
    "next-week",
    "before-due-3-days",
    "before-due-1-day",
    "in-1-hour",
    "in-2-hours",
    "custom",
]

CUSTOM_TARGET = "custom"
MAX_SNOOZE_OPTIONS = 8

DEFAULT_HOUR = 9
LATER_TODAY_HOUR = 20
WEEKEND_HOUR = 10

MED_KEYWORDS = ("med", "meds", "medicament", "medicine", "sanatate", "health", "doctor")

# 关键词 -> 分类, 按顺序匹配
_CATEGORY_KEYWORDS = (
    ("meds", ("med", "medic", "doctor")),
    ("bills", ("factur", "banca", "rata", "bill", "invoice")),
    ("car", ("itp", "rca", "auto")),
    ("home", ("casa", "locuinta", "centrala")),
)


@dataclass(frozen=True)
class SnoozeOption:
    id: SnoozeOptionId
    label: str
    target: Union[datetime, str]  # 具体时间, 或 CUSTOM_TARGET (由调用方另行提供时间)

    def as_dict(self) -> dict:
        target = self.target.isoformat() if isinstance(self.target, datetime) else self.target
        return {"id": self.id, "label": self.label, "target": target}


def _set_time(base: datetime, hour: int, minute: int = 0) -> datetime:
    return base.replace(hour=hour, minute=minute, second=0, microsecond=0)


def _is_future(target: datetime, now: datetime) -> bool:
    return target > now


def _normalize_category(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized or None


def is_meds_category(category: Optional[str]) -> bool:
    category = _normalize_category(category)
    if not category:
        return False
    return any(keyword in category for keyword in MED_KEYWORDS)


def infer_reminder_category(
    title: Optional[str] = None,
    notes: Optional[str] = None,
    category: Optional[str] = None,
) -> Optional[str]:
    """显式分类优先, 否则根据标题和备注中的关键词推断"""
    direct = _normalize_category(category)
    if direct:
        return direct
    haystack = f"{title or ''} {notes or ''}".lower()
    if not haystack.strip():
        return None
    for inferred, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return inferred
    return None


def _later_today(now: datetime) -> datetime:
    target = _set_time(now, LATER_TODAY_HOUR)
    if _is_future(target, now):
        return target
    return _set_time(now + timedelta(days=1), DEFAULT_HOUR)


def _tomorrow(now: datetime) -> datetime:
    return _set_time(now + timedelta(days=1), DEFAULT_HOUR)


def _this_weekend(now: datetime) -> datetime:
    weekday = now.weekday()  # 周一为 0, 周六为 5, 周日为 6
    if weekday in (5, 6):
        today = _set_time(now, WEEKEND_HOUR)
        if _is_future(today, now):
            return today
        days_ahead = 1 if weekday == 5 else 6
        return _set_time(now + timedelta(days=days_ahead), WEEKEND_HOUR)
    return _set_time(now + timedelta(days=5 - weekday), WEEKEND_HOUR)


def _next_week(now: datetime) -> datetime:
    return _set_time(now + timedelta(days=7 - now.weekday()), DEFAULT_HOUR)


def _before_due(due_at: datetime, days_before: int) -> datetime:
    return _set_time(due_at - timedelta(days=days_before), DEFAULT_HOUR)


def get_smart_snooze_options(
    now: datetime,
    category: Optional[str] = None,
    due_at: Optional[datetime] = None,
) -> List[SnoozeOption]:
    options: List[SnoozeOption] = []

    base_options = [
        SnoozeOption("later-today", "Later today", _later_today(now)),
        SnoozeOption("tomorrow", "Tomorrow", _tomorrow(now)),
        SnoozeOption("this-weekend", "This weekend", _this_weekend(now)),
        SnoozeOption("next-week", "Next week", _next_week(now)),
    ]
    for option in base_options:
        if _is_future(option.target, now):
            options.append(option)

    if due_at is not None:
        until_due = due_at - now
        for days, option_id, label in (
            (3, "before-due-3-days", "3 days before due"),
            (1, "before-due-1-day", "1 day before due"),
        ):
            if until_due < timedelta(days=days):
                continue
            target = _before_due(due_at, days)
            if _is_future(target, now):
                options.append(SnoozeOption(option_id, label, target))

    if is_meds_category(category):
        options.append(SnoozeOption("in-1-hour", "In 1 hour", now + timedelta(hours=1)))
        options.append(SnoozeOption("in-2-hours", "In 2 hours", now + timedelta(hours=2)))

    # custom 始终保留在末尾
    options = options[: MAX_SNOOZE_OPTIONS - 1]
    options.append(SnoozeOption("custom", "Pick date and time", CUSTOM_TARGET))
    return options
