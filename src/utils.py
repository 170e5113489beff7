"""时间工具

注意: 数据库中所有时间统一存为 UTC ISO 字符串, 格式 "YYYY-MM-DDTHH:MM:SS.mmmZ",
定长格式保证 SQLite 中可以直接按字符串比较大小。
"""

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

__all__ = ["now_utc", "ensure_utc", "parse_utc", "to_utc_iso",
           "is_valid_timezone", "resolve_timezone", "to_user_local", "format_local_min"]


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """naive datetime 视为 UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_utc(value: Any) -> datetime | None:
    """解析 ISO 时间字符串, 无法解析时返回 None"""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or value.strip() == "":
        return None
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def to_utc_iso(dt: datetime) -> str:
    utc_dt = ensure_utc(dt)
    return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond // 1000:03d}Z"


def is_valid_timezone(tz: str | None) -> bool:
    if not tz:
        return False
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(*candidates: str | None, fallback: str = "UTC") -> str:
    """按顺序返回第一个合法的 IANA 时区名"""
    for tz in candidates:
        if is_valid_timezone(tz):
            return tz
    return fallback


def to_user_local(dt: datetime, user_tz: str) -> datetime:
    return ensure_utc(dt).astimezone(ZoneInfo(user_tz))


def format_local_min(dt: datetime, user_tz: str) -> str:
    """格式化为用户本地时间, 例如 "2026-01-10 12:00 (Europe/Bucharest)" """
    local_dt = to_user_local(dt, user_tz)
    return f"{local_dt.strftime('%Y-%m-%d %H:%M')} ({user_tz})"
