"""原生客户端的本地通知预排表

客户端离线时依赖本地通知, 因此定期拉取未来 N 天将要触发的提醒;
每一项带上 job_key 与 notification_id, 客户端用同一 ID 调度, 重复拉取不会产生重复通知。
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List

from channels.content import parse_medication_details
from datamodel import EntityType, NotificationChannel
from logger import logger
from notifications.keys import build_notification_job_key, notification_id_from_key
from storage.store import DispatchStore
from utils import format_local_min, resolve_timezone, to_utc_iso

__all__ = ["DEFAULT_DAYS", "MAX_DAYS", "clamp_days", "build_upcoming_notifications"]

DEFAULT_DAYS = 7
MAX_DAYS = 30


def clamp_days(days: Any) -> int:
    try:
        value = int(days)
    except (TypeError, ValueError):
        return DEFAULT_DAYS
    return min(MAX_DAYS, max(1, value))


async def build_upcoming_notifications(
    store: DispatchStore,
    user_id: int,
    now: datetime,
    days: Any = DEFAULT_DAYS,
    default_timezone: str = "UTC",
) -> List[Dict[str, Any]]:
    days = clamp_days(days)
    end = now + timedelta(days=days + 1)

    profile = await store.fetch_user_profile(user_id)
    user_tz = resolve_timezone(profile.time_zone if profile else None, fallback=default_timezone)
    rows = await store.fetch_upcoming_occurrences(user_id, now, end)

    seen: set[str] = set()
    items: List[Dict[str, Any]] = []
    for occurrence, reminder in rows:
        effective_at = occurrence.effective_at
        entity_type = EntityType.MEDICATION_DOSE if reminder.is_medication else EntityType.REMINDER
        job_key = build_notification_job_key(entity_type, occurrence.occurrence_id, effective_at, NotificationChannel.PUSH)
        if job_key in seen:
            continue
        seen.add(job_key)

        display_tz = resolve_timezone(reminder.tz, user_tz, fallback=default_timezone)
        time_label = format_local_min(effective_at, display_tz)
        if reminder.is_medication:
            details = parse_medication_details(reminder.medication_details)
            title = f"💊 {details.get('name') or reminder.title}"
            dose = details.get("dose")
            body = f"Dose: {dose} • {time_label}" if dose else f"Time for your medication • {time_label}"
        else:
            title = reminder.title
            body = f"Due: {time_label}"

        items.append({
            "job_key": job_key,
            "notification_id": notification_id_from_key(job_key),
            "reminder_id": reminder.reminder_id,
            "occurrence_id": occurrence.occurrence_id,
            "title": title,
            "body": body,
            "occurrence_at_utc": to_utc_iso(effective_at),
            "timezone": display_tz,
        })

    logger.debug(f"生成本地通知预排表: user_id={user_id}, days={days}, items={len(items)}")
    return items
