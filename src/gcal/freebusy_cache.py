"""日历 free/busy 缓存的纯函数部分

缓存按用户保存一段时间窗口内的忙碌区间, 过期 (TTL) 或覆盖范围不足时由 gcal.service 刷新。
normalize_busy_intervals 只做清洗与排序, 不合并重叠区间; 需要可靠的二分查找时先调用 merge_busy_intervals。
"""

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from datamodel import BusyInterval, FreeBusyCacheEntry
from utils import parse_utc

__all__ = [
    "FREEBUSY_CACHE_TTL", "FREEBUSY_CACHE_WINDOW", "FREEBUSY_BUSY_BUFFER",
    "normalize_busy_intervals", "merge_busy_intervals", "is_cache_fresh",
    "find_busy_interval_at", "compute_postpone_until",
]

FREEBUSY_CACHE_TTL = timedelta(minutes=10)
FREEBUSY_CACHE_WINDOW = timedelta(hours=24)
FREEBUSY_BUSY_BUFFER = timedelta(minutes=2)


def _read_bound(entry: Any, key: str) -> Any:
    if isinstance(entry, BusyInterval):
        return getattr(entry, key)
    if isinstance(entry, dict):
        return entry.get(key)
    return None


def normalize_busy_intervals(raw: Iterable[Any]) -> List[BusyInterval]:
    """丢弃无法解析或 end <= start 的条目, 按开始时间升序排列"""
    normalized: List[BusyInterval] = []
    for entry in raw or []:
        start = parse_utc(_read_bound(entry, "start"))
        end = parse_utc(_read_bound(entry, "end"))
        if start is None or end is None or end <= start:
            continue
        normalized.append(BusyInterval(start=start, end=end))
    normalized.sort(key=lambda interval: interval.start)
    return normalized


def merge_busy_intervals(busy: List[BusyInterval]) -> List[BusyInterval]:
    """合并已排序列表中的重叠或相接区间"""
    merged: List[BusyInterval] = []
    for interval in busy:
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = BusyInterval(start=last.start, end=interval.end)
            continue
        merged.append(interval)
    return merged


def is_cache_fresh(
    cache: FreeBusyCacheEntry,
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    ttl: timedelta = FREEBUSY_CACHE_TTL,
) -> bool:
    fetched_at = parse_utc(cache.fetched_at)
    time_min = parse_utc(cache.time_min)
    time_max = parse_utc(cache.time_max)
    if fetched_at is None or time_min is None or time_max is None:
        return False
    if now - fetched_at > ttl:
        return False
    return time_min <= window_start and time_max >= window_end


def find_busy_interval_at(busy: List[BusyInterval], at: datetime) -> Optional[BusyInterval]:
    """二分查找包含 at 的区间 (start 包含, end 不包含), 要求 busy 已排序且不重叠"""
    left, right = 0, len(busy) - 1
    while left <= right:
        mid = (left + right) // 2
        interval = busy[mid]
        if at < interval.start:
            right = mid - 1
        elif at >= interval.end:
            left = mid + 1
        else:
            return interval
    return None


def compute_postpone_until(
    now: datetime,
    snooze_minutes: int,
    busy_interval: Optional[BusyInterval] = None,
) -> datetime:
    base = now + timedelta(minutes=max(1, snooze_minutes))
    if busy_interval is None:
        return base
    return max(base, busy_interval.end + FREEBUSY_BUSY_BUFFER)
