import json
import storage.db_config as db_config
from datamodel import *
from logger import logger
from utils import parse_utc, to_utc_iso
from datetime import datetime

__all__ = [
    "upsert_calendar_connection",
    "get_calendar_access_token",
    "load_freebusy_cache",
    "store_freebusy_cache",
]


async def upsert_calendar_connection(user_id: int, access_token: str, expires_at: datetime | None = None) -> None:
    """保存日历授权 token (OAuth 换取与刷新由外部完成)"""
    conn = db_config.ensure_conn()
    await conn.execute(
        (
            "INSERT INTO calendar_connections (user_id, access_token, expires_at) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET access_token = excluded.access_token, expires_at = excluded.expires_at"
        ),
        (user_id, access_token, to_utc_iso(expires_at) if expires_at else None)
    )
    await conn.commit()
    logger.trace(f"保存日历连接: user_id={user_id}")


async def get_calendar_access_token(user_id: int, now: datetime | None = None) -> str | None:
    """返回仍然有效的 access token, 已过期或未连接时返回 None"""
    conn = db_config.ensure_conn()
    async with conn.execute(
        "SELECT access_token, expires_at FROM calendar_connections WHERE user_id = ?",
        (user_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None or not row[0]:
        return None
    expires_at = parse_utc(row[1])
    if now is not None and expires_at is not None and expires_at <= now:
        logger.debug(f"日历 token 已过期: user_id={user_id}, expires_at={row[1]}")
        return None
    return row[0]


async def load_freebusy_cache(user_id: int) -> FreeBusyCacheEntry | None:
    conn = db_config.ensure_conn()
    async with conn.execute(
        (
            "SELECT freebusy_cache_json, freebusy_cache_time_min, freebusy_cache_time_max, freebusy_cache_fetched_at "
            "FROM calendar_connections WHERE user_id = ?"
        ),
        (user_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None or row[0] is None:
        return None

    try:
        raw_busy = json.loads(row[0])
    except ValueError:
        logger.warning(f"free/busy 缓存无法解析, 视为无缓存: user_id={user_id}")
        return None

    time_min = parse_utc(row[1])
    time_max = parse_utc(row[2])
    fetched_at = parse_utc(row[3])
    if time_min is None or time_max is None or fetched_at is None:
        return None

    busy = []
    for item in raw_busy if isinstance(raw_busy, list) else []:
        start = parse_utc(item.get("start")) if isinstance(item, dict) else None
        end = parse_utc(item.get("end")) if isinstance(item, dict) else None
        if start is not None and end is not None:
            busy.append(BusyInterval(start=start, end=end))
    return FreeBusyCacheEntry(busy=busy, time_min=time_min, time_max=time_max, fetched_at=fetched_at)


async def store_freebusy_cache(user_id: int, entry: FreeBusyCacheEntry) -> None:
    """覆盖写入缓存, 并发刷新时后写入者生效"""
    conn = db_config.ensure_conn()
    payload = json.dumps(
        [{"start": to_utc_iso(interval.start), "end": to_utc_iso(interval.end)} for interval in entry.busy]
    )
    await conn.execute(
        (
            "INSERT INTO calendar_connections (user_id, freebusy_cache_json, freebusy_cache_time_min, freebusy_cache_time_max, freebusy_cache_fetched_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET freebusy_cache_json = excluded.freebusy_cache_json, "
            "freebusy_cache_time_min = excluded.freebusy_cache_time_min, "
            "freebusy_cache_time_max = excluded.freebusy_cache_time_max, "
            "freebusy_cache_fetched_at = excluded.freebusy_cache_fetched_at"
        ),
        (user_id, payload, to_utc_iso(entry.time_min), to_utc_iso(entry.time_max), to_utc_iso(entry.fetched_at))
    )
    await conn.commit()
    logger.debug(f"更新 free/busy 缓存: user_id={user_id}, busy={len(entry.busy)}")
