"""通知任务的幂等键

同一个 (实体类型, 实体 ID, 发生时刻, 通道[, 用户]) 只对应一个键, 调度时据此去重;
原生客户端需要整数形式的通知 ID, 由 notification_id_from_key 从键推导。
"""

from datetime import datetime

from datamodel import EntityType, NotificationChannel
from utils import to_utc_iso

__all__ = ["build_notification_job_key", "notification_id_from_key"]

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def _as_text(value: object) -> str:
    if isinstance(value, (EntityType, NotificationChannel)):
        return value.value
    if isinstance(value, datetime):
        return to_utc_iso(value)
    return str(value)


def build_notification_job_key(
    entity_type: EntityType | str,
    entity_id: int | str,
    occurrence_at_utc: datetime | str,
    channel: NotificationChannel | str,
    user_id: int | str | None = None,
) -> str:
    parts = [_as_text(entity_type), _as_text(entity_id), _as_text(occurrence_at_utc), _as_text(channel)]
    if user_id is not None and str(user_id) != "":
        parts.append(_as_text(user_id))
    return ":".join(parts)


def notification_id_from_key(key: str) -> int:
    """32 位 FNV-1a, 截断到 31 位以保证在 Android 的 int32 通知 ID 范围内且非负"""
    h = _FNV_OFFSET_BASIS
    for byte in key.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h & 0x7FFFFFFF
