import storage.db_config as db_config
from datamodel import *
from logger import logger
from utils import parse_utc, to_utc_iso, now_utc
from datetime import datetime

__all__ = [
    "create_occurrence",
    "get_occurrence_by_id",
    "get_due_occurrences",
    "update_occurrence_snooze",
    "get_upcoming_occurrences_by_user_id",
]

_COLUMNS = "o.occurrence_id, o.reminder_id, o.occur_at, o.snoozed_until, o.status, o.performed_by"


def _row_to_occurrence(row) -> Occurrence:
    return Occurrence(
        occurrence_id=row[0],
        reminder_id=row[1],
        occur_at=parse_utc(row[2]),
        snoozed_until=parse_utc(row[3]),
        status=OccurrenceStatus(row[4]),
        performed_by=row[5],
    )


async def create_occurrence(
    reminder_id: int,
    occur_at: datetime,
    status: OccurrenceStatus = OccurrenceStatus.OPEN,
    snoozed_until: datetime | None = None,
) -> Occurrence:
    """创建 occurrence (由提醒的重复规则生成, 这里主要用于导入和测试)"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        "INSERT INTO reminder_occurrences (reminder_id, occur_at, snoozed_until, status) VALUES (?, ?, ?, ?)",
        (reminder_id, to_utc_iso(occur_at), to_utc_iso(snoozed_until) if snoozed_until else None, status.value)
    ) as cursor:
        occurrence_id = cursor.lastrowid
    await conn.commit()
    logger.trace(f"创建 occurrence: occurrence_id={occurrence_id}, reminder_id={reminder_id}, occur_at={occur_at}")
    return Occurrence(
        occurrence_id=occurrence_id,
        reminder_id=reminder_id,
        occur_at=occur_at,
        snoozed_until=snoozed_until,
        status=status,
    )


async def get_occurrence_by_id(occurrence_id: int) -> Occurrence | None:
    conn = db_config.ensure_conn()
    async with conn.execute(
        f"SELECT {_COLUMNS} FROM reminder_occurrences o WHERE o.occurrence_id = ?",
        (occurrence_id,)
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_occurrence(row) if row else None


async def get_due_occurrences(now: datetime) -> list[Occurrence]:
    """获取所有已到期的 occurrence: 已延后且延后时间已过, 或未延后且发生时间已过"""
    conn = db_config.ensure_conn()
    now_iso = to_utc_iso(now)
    async with conn.execute(
        (
            f"SELECT {_COLUMNS} FROM reminder_occurrences o "
            "WHERE (o.status = 'snoozed' AND o.snoozed_until IS NOT NULL AND o.snoozed_until <= ?) "
            "OR (o.status = 'open' AND o.occur_at <= ?) "
            "ORDER BY COALESCE(o.snoozed_until, o.occur_at) ASC, o.occurrence_id ASC"
        ),
        (now_iso, now_iso)
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_occurrence(row) for row in rows]


async def update_occurrence_snooze(
    occurrence_id: int,
    snoozed_until: datetime,
    status: OccurrenceStatus = OccurrenceStatus.SNOOZED,
    performed_by: int | None = None,
) -> None:
    conn = db_config.ensure_conn()
    await conn.execute(
        (
            "UPDATE reminder_occurrences SET snoozed_until = ?, status = ?, "
            "performed_by = COALESCE(?, performed_by), performed_at = CASE WHEN ? IS NULL THEN performed_at ELSE ? END, "
            "updated_at_utc = CURRENT_TIMESTAMP WHERE occurrence_id = ?"
        ),
        (to_utc_iso(snoozed_until), status.value, performed_by, performed_by, to_utc_iso(now_utc()), occurrence_id)
    )
    await conn.commit()
    logger.trace(f"更新 occurrence 延后: occurrence_id={occurrence_id}, snoozed_until={snoozed_until}, status={status.value}")


async def get_upcoming_occurrences_by_user_id(user_id: int, start: datetime, end: datetime) -> list[tuple[Occurrence, Reminder]]:
    """获取用户名下 [start, end] 内将要到期的 occurrence, 按实际到期时间排序"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        (
            f"SELECT {_COLUMNS}, r.title, r.kind, r.medication_details, r.tz, r.household_id, r.is_active, r.created_by, r.context_settings "
            "FROM reminder_occurrences o JOIN reminders r ON r.reminder_id = o.reminder_id "
            "WHERE r.created_by = ? AND r.is_active = 1 AND o.status IN ('open', 'snoozed') "
            "AND COALESCE(o.snoozed_until, o.occur_at) >= ? AND COALESCE(o.snoozed_until, o.occur_at) <= ? "
            "ORDER BY COALESCE(o.snoozed_until, o.occur_at) ASC"
        ),
        (user_id, to_utc_iso(start), to_utc_iso(end))
    ) as cursor:
        rows = await cursor.fetchall()

    results = []
    for row in rows:
        occurrence = _row_to_occurrence(row)
        reminder = Reminder(
            reminder_id=occurrence.reminder_id,
            title=row[6],
            kind=row[7],
            medication_details=row[8],
            tz=row[9],
            household_id=row[10],
            is_active=bool(row[11]),
            created_by=row[12],
            context_settings=row[13],
        )
        results.append((occurrence, reminder))
    return results
