import json
import storage.db_config as db_config
from datamodel import *
from logger import logger
from typing import Any

__all__ = ["create_reminder", "get_reminder_by_id", "get_reminder_context_settings"]


def _dumps(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


async def create_reminder(
    title: str,
    created_by: int | None,
    household_id: int | None = None,
    kind: str = "task",
    context_settings: Any = None,
    medication_details: Any = None,
    tz: str | None = None,
    is_active: bool = True,
) -> Reminder:
    """创建提醒 (提醒的增删改由主应用负责, 这里主要用于导入和测试)"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        (
            "INSERT INTO reminders (household_id, title, kind, medication_details, context_settings, tz, is_active, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)"
        ),
        (household_id, title, kind, _dumps(medication_details), _dumps(context_settings), tz, 1 if is_active else 0, created_by)
    ) as cursor:
        reminder_id = cursor.lastrowid
    await conn.commit()
    logger.trace(f"创建提醒: reminder_id={reminder_id}, title={title}, created_by={created_by}")
    return Reminder(
        reminder_id=reminder_id,
        title=title,
        household_id=household_id,
        is_active=is_active,
        created_by=created_by,
        context_settings=_dumps(context_settings),
        kind=kind,
        medication_details=_dumps(medication_details),
        tz=tz,
    )


async def get_reminder_by_id(reminder_id: int) -> Reminder | None:
    conn = db_config.ensure_conn()
    async with conn.execute(
        (
            "SELECT reminder_id, title, household_id, is_active, created_by, context_settings, kind, medication_details, tz "
            "FROM reminders WHERE reminder_id = ?"
        ),
        (reminder_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return Reminder(
        reminder_id=row[0],
        title=row[1],
        household_id=row[2],
        is_active=bool(row[3]),
        created_by=row[4],
        context_settings=row[5],
        kind=row[6] or "task",
        medication_details=row[7],
        tz=row[8],
    )


async def get_reminder_context_settings(reminder_id: int) -> str | None:
    """返回原始 context_settings 文本, 解析交给 reminders.context"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        "SELECT context_settings FROM reminders WHERE reminder_id = ?",
        (reminder_id,)
    ) as cursor:
        row = await cursor.fetchone()
    return row[0] if row else None
