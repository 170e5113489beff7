import storage.db_config as db_config
from datamodel import *
from logger import logger
from utils import parse_utc, to_utc_iso
from datetime import datetime

__all__ = [
    "insert_delivery_log",
    "update_delivery_log_status",
    "has_delivery_for_job",
    "get_delivery_logs",
]

# 这些状态的记录表示任务已被占用, 不应再次发送
_BLOCKING_STATUSES = (DeliveryStatus.SENT.value, DeliveryStatus.PENDING.value)


async def insert_delivery_log(
    occurrence_id: int,
    channel: NotificationChannel,
    status: DeliveryStatus,
    sent_at: datetime,
    job_key: str | None = None,
) -> int:
    conn = db_config.ensure_conn()
    async with conn.execute(
        "INSERT INTO notification_log (occurrence_id, channel, status, sent_at, job_key) VALUES (?, ?, ?, ?, ?)",
        (occurrence_id, NotificationChannel(channel).value, DeliveryStatus(status).value, to_utc_iso(sent_at), job_key)
    ) as cursor:
        log_id = cursor.lastrowid
    await conn.commit()
    logger.trace(f"写入投递记录: log_id={log_id}, occurrence_id={occurrence_id}, channel={channel}, status={status}")
    return log_id


async def update_delivery_log_status(log_id: int, status: DeliveryStatus, error: str | None = None) -> None:
    conn = db_config.ensure_conn()
    await conn.execute(
        "UPDATE notification_log SET status = ?, error = ?, updated_at_utc = CURRENT_TIMESTAMP WHERE log_id = ?",
        (DeliveryStatus(status).value, error, log_id)
    )
    await conn.commit()


async def has_delivery_for_job(job_key: str) -> bool:
    conn = db_config.ensure_conn()
    async with conn.execute(
        f"SELECT 1 FROM notification_log WHERE job_key = ? AND status IN ({', '.join('?' for _ in _BLOCKING_STATUSES)}) LIMIT 1",
        (job_key, *_BLOCKING_STATUSES)
    ) as cursor:
        row = await cursor.fetchone()
    return row is not None


async def get_delivery_logs(
    occurrence_id: int | None = None,
    status: DeliveryStatus | None = None,
    limit: int = 100,
) -> list[DeliveryLogEntry]:
    """按写入时间倒序返回投递记录"""
    conn = db_config.ensure_conn()
    sql = "SELECT log_id, occurrence_id, channel, status, sent_at, job_key, error FROM notification_log"
    clauses = []
    params: list = []
    if occurrence_id is not None:
        clauses.append("occurrence_id = ?")
        params.append(occurrence_id)
    if status is not None:
        clauses.append("status = ?")
        params.append(DeliveryStatus(status).value)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY log_id DESC LIMIT ?"
    params.append(max(1, limit))

    async with conn.execute(sql, params) as cursor:
        rows = await cursor.fetchall()
    return [
        DeliveryLogEntry(
            log_id=row[0],
            occurrence_id=row[1],
            channel=NotificationChannel(row[2]),
            status=DeliveryStatus(row[3]),
            sent_at=parse_utc(row[4]),
            job_key=row[5],
            error=row[6],
        )
        for row in rows
    ]
